"""
Accounts views.

This module provides API views for:
- JWT login that records activity (token obtain)
- Registration of general users
- The current user's profile (read/update with re-authentication)
- Directory lookups (list by role, search, resolve)
- Administrator operations (dashboard stats, create admin, delete user)

URL Structure:
    /api/v1/auth/token/              POST   - Obtain JWT pair (records activity)
    /api/v1/auth/token/refresh/      POST   - Refresh access token
    /api/v1/auth/register/           POST   - Create a general user
    /api/v1/auth/me/                 GET, PATCH
    /api/v1/auth/users/              GET    - ?role=admin|general, ?search=
    /api/v1/auth/users/{id}/         GET    - Resolve one user
    /api/v1/auth/admin/stats/        GET
    /api/v1/auth/admin/admins/       POST
    /api/v1/auth/admin/users/{id}/   DELETE

Related files:
    - serializers.py: Request/response serialization
    - services.py: DirectoryService business logic
"""

from drf_spectacular.utils import OpenApiParameter, extend_schema, extend_schema_view
from rest_framework import status, viewsets
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework_simplejwt.views import TokenObtainPairView

from accounts.permissions import IsDirectoryAdmin
from accounts.serializers import (
    ActivityTokenObtainPairSerializer,
    AdminCreateSerializer,
    DashboardStatsSerializer,
    ProfileUpdateSerializer,
    RegisterSerializer,
    UserSerializer,
)
from accounts.services import DirectoryService


@extend_schema(summary="Obtain JWT token pair", tags=["Auth"])
class ActivityTokenObtainPairView(TokenObtainPairView):
    """Email/password login returning access and refresh tokens."""

    serializer_class = ActivityTokenObtainPairSerializer


class RegisterView(APIView):
    """
    Create a general user account.

    URL: /api/v1/auth/register/
    """

    permission_classes = [AllowAny]

    @extend_schema(
        summary="Register",
        tags=["Auth"],
        request=RegisterSerializer,
        responses={201: UserSerializer},
    )
    def post(self, request):
        serializer = RegisterSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = DirectoryService.register(**serializer.validated_data)
        if not result.success:
            return Response(result.to_error_response(), status=result.http_status)

        return Response(UserSerializer(result.data).data, status=status.HTTP_201_CREATED)


class MeView(APIView):
    """
    The current user's profile.

    GET: Retrieve profile
    PATCH: Update display name/avatar, or email/password with current_password

    URL: /api/v1/auth/me/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(summary="Get current user", tags=["Auth - Profile"], responses={200: UserSerializer})
    def get(self, request):
        return Response(UserSerializer(request.user).data)

    @extend_schema(
        summary="Update current user",
        description=(
            "Display name and avatar can be changed directly. Changing email "
            "or password requires current_password."
        ),
        tags=["Auth - Profile"],
        request=ProfileUpdateSerializer,
        responses={200: UserSerializer},
    )
    def patch(self, request):
        serializer = ProfileUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = DirectoryService.update_profile(request.user, **serializer.validated_data)
        if not result.success:
            return Response(result.to_error_response(), status=result.http_status)

        return Response(UserSerializer(result.data).data)


@extend_schema_view(
    list=extend_schema(
        operation_id="list_users",
        summary="List or search users",
        parameters=[
            OpenApiParameter("role", str, description="admin or general"),
            OpenApiParameter("search", str, description="Match display name or email"),
        ],
        tags=["Directory"],
    ),
    retrieve=extend_schema(
        operation_id="get_user",
        summary="Resolve user",
        tags=["Directory"],
    ),
)
class UserViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Directory lookups.

    list:
        Users of a role (?role=) or matching a search (?search=).
        Without parameters, all active users.

    retrieve:
        Resolve a user id to its profile.
    """

    permission_classes = [IsAuthenticated]
    serializer_class = UserSerializer

    def get_queryset(self):
        role = self.request.query_params.get("role") or None
        search = self.request.query_params.get("search", "")
        return DirectoryService.search(search, role=role)

    def list(self, request, *args, **kwargs):
        role = request.query_params.get("role")
        if role:
            result = DirectoryService.list_by_role(role)
            if not result.success:
                return Response(result.to_error_response(), status=result.http_status)
        return super().list(request, *args, **kwargs)

    def retrieve(self, request, pk=None):
        result = DirectoryService.resolve(pk)
        if not result.success:
            return Response(result.to_error_response(), status=result.http_status)
        return Response(UserSerializer(result.data).data)


class AdminStatsView(APIView):
    """Admin dashboard counts. URL: /api/v1/auth/admin/stats/"""

    permission_classes = [IsAuthenticated, IsDirectoryAdmin]

    @extend_schema(summary="Dashboard stats", tags=["Admin"], responses={200: DashboardStatsSerializer})
    def get(self, request):
        result = DirectoryService.dashboard_stats(request.user)
        if not result.success:
            return Response(result.to_error_response(), status=result.http_status)
        return Response(DashboardStatsSerializer(result.data).data)


class AdminCreateView(APIView):
    """Create another administrator. URL: /api/v1/auth/admin/admins/"""

    permission_classes = [IsAuthenticated, IsDirectoryAdmin]

    @extend_schema(
        summary="Create admin",
        tags=["Admin"],
        request=AdminCreateSerializer,
        responses={201: UserSerializer},
    )
    def post(self, request):
        serializer = AdminCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = DirectoryService.create_admin(request.user, **serializer.validated_data)
        if not result.success:
            return Response(result.to_error_response(), status=result.http_status)

        return Response(UserSerializer(result.data).data, status=status.HTTP_201_CREATED)


class AdminUserDeleteView(APIView):
    """Delete a user account. URL: /api/v1/auth/admin/users/{id}/"""

    permission_classes = [IsAuthenticated, IsDirectoryAdmin]

    @extend_schema(summary="Delete user", tags=["Admin"], responses={204: None})
    def delete(self, request, user_id):
        result = DirectoryService.delete_user(request.user, user_id)
        if not result.success:
            return Response(result.to_error_response(), status=result.http_status)
        return Response(status=status.HTTP_204_NO_CONTENT)
