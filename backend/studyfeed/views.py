"""
DRF Views
=========

API endpoints for Studygram.

Views stay thin: they unpack the request, call one service operation and
render its Result. ErrorKind -> HTTP status mapping lives in
result_response().

AUTHENTICATION NOTE:
--------------------
Session authentication. Reads are public (the viewer is optional),
writes require a logged-in user.
"""

import logging

from django.contrib.auth import logout
from django.http import FileResponse
from django.utils.translation import gettext as _
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from . import accounts, services
from .models import TEMP_FILE_ID_PREFIX
from .results import ErrorKind, Result
from .serializers import (
    CommentViewSerializer,
    LikedStateSerializer,
    PostDetailSerializer,
    PostSummarySerializer,
    ProfileViewSerializer,
    SimplePostSerializer,
)
from .storage import ObjectStore

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.AUTHENTICATION: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.AUTHORIZATION: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.UPSTREAM: status.HTTP_502_BAD_GATEWAY,
}


def result_response(result: Result, serializer_class=None, many=False, success_status=status.HTTP_200_OK):
    """Render a service Result as {success, data} or {success, error, kind}."""
    if not result.success:
        return Response(result.as_dict(), status=ERROR_STATUS[result.kind])

    data = result.data
    if serializer_class is not None:
        data = serializer_class(data, many=many).data
    return Response({'success': True, 'data': data}, status=success_status)


def submitted_files(request) -> list[dict]:
    """
    The edited file list from a multipart request.

    file_ids lists every file the post should end up with. A new file has
    a temporary id (TEMP_FILE_ID_PREFIX...) and its upload is sent under
    that same id. A single empty file_ids value means "no files".
    """
    if hasattr(request.data, 'getlist'):
        file_ids = request.data.getlist('file_ids')
    else:
        file_ids = request.data.get('file_ids') or []

    entries = []
    for file_id in file_ids:
        file_id = str(file_id)
        if not file_id:
            continue
        entry = {'id': file_id}
        if file_id.startswith(TEMP_FILE_ID_PREFIX):
            entry['file'] = request.FILES.get(file_id)
        entries.append(entry)
    return entries


# ============================================================================
# FEED & POSTS
# ============================================================================

class FeedView(APIView):
    """
    GET /api/feed/?module=<id|all>&search=<text>&sort=<recent|popular|comments>

    QUERY COUNT: 3 regardless of feed size
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        result = services.list_posts(
            module_id=request.query_params.get('module', 'all'),
            search=request.query_params.get('search', ''),
            sort_by=request.query_params.get('sort', 'recent'),
        )
        return result_response(result, PostSummarySerializer, many=True)


class PostCreateView(APIView):
    """
    POST /api/posts/  (multipart)

    Fields: title, module, files (repeated)
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        data = {
            'title': request.data.get('title'),
            'module': request.data.get('module'),
            'files': request.FILES.getlist('files'),
        }
        result = services.create_post(request.user, data)
        return result_response(result, success_status=status.HTTP_201_CREATED)


class PostDetailView(APIView):
    """
    GET    /api/posts/<id>/   post detail (liked is relative to the viewer)
    PUT    /api/posts/<id>/   edit (author only). Fields: title, module, file_ids
    DELETE /api/posts/<id>/   delete (author only)
    """
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]

    def get(self, request, post_id):
        result = services.get_post(post_id, viewer=request.user)
        return result_response(result, PostDetailSerializer)

    def put(self, request, post_id):
        data = {
            'title': request.data.get('title'),
            'module': request.data.get('module'),
        }
        if 'file_ids' in request.data:
            data['files'] = submitted_files(request)
        result = services.update_post(post_id, request.user, data)
        return result_response(result)

    def delete(self, request, post_id):
        result = services.delete_post(post_id, request.user)
        return result_response(result)


class LikePostView(APIView):
    """
    POST /api/posts/<id>/like/

    Toggles the caller's like. Returns {post_id, liked, likes}.
    """
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, post_id):
        result = services.toggle_like(post_id, request.user)
        return result_response(result, LikedStateSerializer)


class CommentListCreateView(APIView):
    """
    GET  /api/posts/<id>/comments/   newest first
    POST /api/posts/<id>/comments/   {"content": "..."}
    """
    permission_classes = [permissions.IsAuthenticatedOrReadOnly]

    def get(self, request, post_id):
        result = services.get_comments(post_id)
        return result_response(result, CommentViewSerializer, many=True)

    def post(self, request, post_id):
        result = services.add_comment(post_id, request.user, request.data.get('content'))
        return result_response(result, CommentViewSerializer, success_status=status.HTTP_201_CREATED)


class FileDownloadView(APIView):
    """
    GET /api/files/<id>/download/

    Streams the stored blob as an attachment.
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request, file_id):
        result = services.get_file(file_id)
        if not result.success:
            return result_response(result)

        post_file = result.data
        store = ObjectStore()
        if not store.exists(post_file.file_path):
            logger.warning(f"Blob of file {file_id} is missing: {post_file.file_path}")
            return result_response(Result.fail(ErrorKind.NOT_FOUND, _('File not found.')))

        handle = store.open(post_file.file_path)
        return FileResponse(
            handle,
            as_attachment=True,
            filename=post_file.file_name,
            content_type=post_file.file_type,
        )


class ModuleListView(APIView):
    """
    GET /api/modules/?grouped=1
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        grouped = request.query_params.get('grouped', '').lower() in ('1', 'true', 'yes')
        return result_response(services.list_modules(grouped=grouped))


# ============================================================================
# ACCOUNTS
# ============================================================================

class RegisterView(APIView):
    """
    POST /api/auth/register/
    {first_name, last_name, email, password, confirm_password}
    """
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        result = accounts.register_user(request.data)
        return result_response(result, ProfileViewSerializer, success_status=status.HTTP_201_CREATED)


class LoginView(APIView):
    """
    POST /api/auth/login/  {email, password}

    Opens a session on success.
    """
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        result = accounts.authenticate_user(
            request,
            request.data.get('email'),
            request.data.get('password'),
        )
        return result_response(result, ProfileViewSerializer)


class LogoutView(APIView):
    """POST /api/auth/logout/"""
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        logout(request)
        return Response({'success': True})


class WhoAmIView(APIView):
    """
    GET /api/auth/whoami/

    Returns current authenticated user info.
    """
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        if request.user.is_authenticated:
            return Response({
                'authenticated': True,
                **ProfileViewSerializer(accounts.profile_view(request.user)).data
            })
        return Response({
            'authenticated': False,
            'user_id': None,
            'username': None
        })


class ProfileView(APIView):
    """
    GET   /api/me/
    PATCH /api/me/  {first_name, last_name}
    """
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        return result_response(accounts.get_profile(request.user), ProfileViewSerializer)

    def patch(self, request):
        result = accounts.edit_profile(request.user, request.data)
        return result_response(result, ProfileViewSerializer)


class MyPostsView(APIView):
    """GET /api/me/posts/"""
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        result = services.get_posts_by_user(request.user)
        return result_response(result, SimplePostSerializer, many=True)
