import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError

from account_admin.config import Settings
from account_admin.database import models
from account_admin.repositories.interfaces import (
    ICredentialRepository, IPermissionRepository, IRoleRepository, IUserRepository
)
from account_admin.services.exceptions import (
    AuthenticationError, InvalidPasswordError, InvalidRoleError, InvalidUserError,
    MembershipConflictError, PasswordChangeError, PermissionNotFoundError, RoleAlreadyExistsError,
    RoleNotFoundError, RolePermissionNotFoundError, TokenInvalidError,
    UserAlreadyExistsError, UserNotFoundError
)

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class IdentityService:
    """사용자, 역할, 권한, 멤버십 및 로그인 세션 관리 서비스를 제공합니다.

    이 서비스는 commit을 호출하지 않습니다. 한 번의 호출(또는 한 번의 HTTP 요청)은
    호출자가 session_scope()로 연 하나의 트랜잭션 안에서 실행되며, 예외가 발생하면
    그 트랜잭션 전체가 롤백됩니다. 단, AuthenticationError, PasswordChangeError,
    TokenInvalidError 직전의 변경(실패 횟수, 잠금, 만료 세션 삭제)은 호출자가 커밋해야 유지됩니다.
    """

    def __init__(
        self,
        user_repo: IUserRepository,
        role_repo: IRoleRepository,
        permission_repo: IPermissionRepository,
        credential_repo: ICredentialRepository,
        settings: Settings,
    ):
        """
        IdentityService를 초기화합니다.

        Args:
            user_repo: 사용자 프로필에 접근하기 위한 리포지토리.
            role_repo: 역할과 멤버십, 역할-권한 연결에 접근하기 위한 리포지토리.
            permission_repo: 권한 카탈로그에 접근하기 위한 리포지토리.
            credential_repo: 비밀번호, 잠금, 로그인 세션을 소유하는 자격 증명 시스템.
            settings: 세션 수명 등 애플리케이션 설정.
        """
        self.user_repo = user_repo
        self.role_repo = role_repo
        self.permission_repo = permission_repo
        self.credential_repo = credential_repo
        self.settings = settings

    # --------------------------------------------------------------------------
    ## 내부 유틸리티
    # --------------------------------------------------------------------------

    def _is_valid_password(self, username: str, password: str) -> bool:
        if not password or username.lower() in password.lower():
            return False
        return self.credential_repo.validate_password_strength(password)

    def _get_user_or_raise(self, username: str) -> models.User:
        user = self.user_repo.find_by_username(username or "")
        if not user:
            raise UserNotFoundError(f"User '{username}' not found.")
        return user

    def _get_role_or_raise(self, role_name: str) -> models.Role:
        role = self.role_repo.find_by_name(role_name or "")
        if not role:
            raise RoleNotFoundError(f"Role '{role_name}' not found.")
        return role

    @staticmethod
    def _to_user_dict(user: models.User, credential: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        credential = credential or {}
        return {
            "username": user.username,
            "full_name": user.full_name,
            "email": credential.get("email"),
            "is_locked_out": credential.get("is_locked_out", False),
            "is_online": credential.get("is_online", False),
            "creation_date": _iso(credential.get("creation_date")),
            "last_login_date": _iso(credential.get("last_login_date")),
            "last_password_change_date": _iso(credential.get("last_password_change_date")),
        }

    @staticmethod
    def _to_permission_dict(permission: models.Permission) -> Dict[str, str]:
        return {"id": permission.id, "name": permission.name}

    # --------------------------------------------------------------------------
    ## 사용자 관리
    # --------------------------------------------------------------------------

    def create_user(self, username: str, full_name: str, password: str, email: str) -> Dict[str, Any]:
        """
        새로운 사용자를 생성하고, 자격 증명 레코드도 함께 만듭니다.

        Returns:
            생성된 사용자 정보 딕셔너리. (비밀번호 제외)

        Raises:
            InvalidUserError: 사용자 이름이 비어 있을 때.
            InvalidPasswordError: 비밀번호가 비어 있거나, 사용자 이름을 포함하거나, 정책을 통과하지 못할 때.
            UserAlreadyExistsError: 동일한 이름의 사용자가 이미 존재할 때.
        """
        if not username or not username.strip():
            raise InvalidUserError("No UserName")
        if not password:
            raise InvalidPasswordError("No Password")

        username = username.strip().lower()
        if not self._is_valid_password(username, password):
            raise InvalidPasswordError("Not a valid password")

        if self.user_repo.find_by_username(username):
            raise UserAlreadyExistsError(f"User with username '{username}' already exists.")

        try:
            user = self.user_repo.create(models.User(username=username, full_name=full_name or ""))
            self.credential_repo.create(username, password, email or "")
        except IntegrityError as e:
            # 동시에 같은 이름으로 생성한 요청이 먼저 반영된 경우
            raise UserAlreadyExistsError(f"User with username '{username}' already exists.") from e

        logger.info("사용자 '%s' 생성", username)
        return self._to_user_dict(user, self.credential_repo.get(username))

    def list_users(self) -> List[Dict[str, Any]]:
        """프로필과 자격 증명이 모두 있는 사용자의 목록을 조회합니다."""
        result = []
        for user in self.user_repo.list_all():
            credential = self.credential_repo.get(user.username)
            if credential is not None:
                result.append(self._to_user_dict(user, credential))
        return result

    def get_user(self, username: str) -> Dict[str, Any]:
        """
        사용자 이름으로 특정 사용자를 조회합니다.

        Raises:
            UserNotFoundError: 사용자 또는 자격 증명 레코드를 찾을 수 없을 때.
        """
        user = self._get_user_or_raise(username)
        credential = self.credential_repo.get(user.username)
        if credential is None:
            raise UserNotFoundError(f"User '{username}' not found.")
        return self._to_user_dict(user, credential)

    def get_expanded_user(self, username: str) -> Dict[str, Any]:
        """
        사용자 정보와 함께, 사용자가 속한 모든 역할과 각 역할의 권한 목록을 조회합니다.
        권한이 하나도 없는 역할도 빈 목록으로 포함됩니다.

        Raises:
            UserNotFoundError: 사용자를 찾을 수 없을 때.
        """
        user = self._get_user_or_raise(username)
        result = self._to_user_dict(user, self.credential_repo.get(user.username))
        result["roles"] = [
            {
                "role_name": role.name,
                "permissions": [
                    {"name": p.name, "id": p.id} for p in self.role_repo.list_permissions(role)
                ],
            }
            for role in self.role_repo.list_roles_for_user(user)
        ]
        return result

    def update_user(
        self,
        username: str,
        full_name: str,
        email: str,
        password: Optional[str] = None,
        unlock: bool = False,
    ) -> Dict[str, Any]:
        """
        사용자의 이름과 이메일을 갱신합니다.
        unlock이 True이고 계정이 잠겨 있으면 잠금을 해제하고, 새 비밀번호가 주어지면 검증 후 적용합니다.

        Raises:
            UserNotFoundError: 사용자를 찾을 수 없을 때.
            InvalidPasswordError: 새 비밀번호가 정책을 통과하지 못할 때.
        """
        user = self._get_user_or_raise(username)
        credential = self.credential_repo.get(user.username)
        if credential is None:
            raise UserNotFoundError(f"User '{username}' not found.")

        # 아무것도 바꾸기 전에 검증합니다.
        if password and not self._is_valid_password(user.username, password):
            raise InvalidPasswordError("Not a valid password")

        if unlock and credential["is_locked_out"]:
            self.credential_repo.unlock(user.username)

        self.credential_repo.update(user.username, email=email or "")
        user.full_name = full_name or ""
        self.user_repo.update(user)

        if password:
            self.credential_repo.set_password(user.username, password)

        logger.info("사용자 '%s' 갱신", user.username)
        return self._to_user_dict(user, self.credential_repo.get(user.username))

    def delete_user(self, username: str) -> bool:
        """
        사용자를 삭제합니다. 역할 멤버십을 먼저 제거한 뒤 프로필과 자격 증명을 삭제합니다.
        사용자가 없으면 아무 작업도 하지 않고 성공으로 처리합니다.
        """
        user = self.user_repo.find_by_username(username or "")
        if user:
            self.user_repo.delete(user)
            logger.info("사용자 '%s' 삭제", user.username)
        if username:
            self.credential_repo.delete(username)
        return True

    def change_password(self, username: str, old_password: str, new_password: str) -> Dict[str, Any]:
        """
        기존 비밀번호를 확인한 뒤 비밀번호를 변경합니다.

        Raises:
            UserNotFoundError: 사용자를 찾을 수 없을 때.
            PasswordChangeError: 기존 비밀번호가 틀렸거나 새 비밀번호가 정책을 통과하지 못할 때.
        """
        user = self._get_user_or_raise(username)
        if not self._is_valid_password(user.username, new_password):
            raise PasswordChangeError("Password change failed")
        if not self.credential_repo.change_password(user.username, old_password or "", new_password):
            raise PasswordChangeError("Password change failed")
        return self._to_user_dict(user, self.credential_repo.get(user.username))

    def unlock_user(self, username: str) -> bool:
        """잠긴 계정을 해제합니다. 사용자가 없거나 해제에 실패하면 False를 반환합니다."""
        user = self.user_repo.find_by_username(username or "")
        if not user:
            return False
        return self.credential_repo.unlock(user.username)

    # --------------------------------------------------------------------------
    ## 역할 관리
    # --------------------------------------------------------------------------

    def create_role(self, role_name: str) -> Dict[str, str]:
        """
        새로운 역할을 생성합니다.

        Raises:
            InvalidRoleError: 역할 이름이 비어 있을 때.
            RoleAlreadyExistsError: 대소문자를 무시하고 같은 이름의 역할이 이미 존재할 때.
        """
        if not role_name or not role_name.strip():
            raise InvalidRoleError("No RoleName")
        role_name = role_name.strip()

        if self.role_repo.find_by_name(role_name):
            raise RoleAlreadyExistsError(f"Role '{role_name}' already exists.")
        try:
            role = self.role_repo.create(models.Role(name=role_name))
        except IntegrityError as e:
            raise RoleAlreadyExistsError(f"Role '{role_name}' already exists.") from e

        logger.info("역할 '%s' 생성", role.name)
        return {"role_name": role.name}

    def list_roles(self) -> List[Dict[str, str]]:
        """모든 역할의 목록을 조회합니다."""
        return [{"role_name": r.name} for r in self.role_repo.list_all()]

    def delete_role(self, role_name: str) -> bool:
        """
        역할을 삭제합니다. 역할의 모든 사용자 멤버십과 권한 연결이 같은 트랜잭션에서 함께 삭제됩니다.

        Raises:
            RoleNotFoundError: 역할을 찾을 수 없을 때.
        """
        role = self._get_role_or_raise(role_name)
        self.role_repo.delete(role)
        logger.info("역할 '%s' 삭제", role.name)
        return True

    # --------------------------------------------------------------------------
    ## 멤버십 관리
    # --------------------------------------------------------------------------

    def add_user_to_role(self, username: str, role_name: str) -> Dict[str, str]:
        """
        사용자를 역할에 추가합니다. 이미 멤버이면 그대로 성공합니다.

        Raises:
            UserNotFoundError: 사용자를 찾을 수 없을 때.
            RoleNotFoundError: 역할을 찾을 수 없을 때.
            MembershipConflictError: 다른 요청이 같은 멤버십을 먼저 추가했거나 역할을 삭제했을 때.
        """
        user = self._get_user_or_raise(username)
        role = self._get_role_or_raise(role_name)
        try:
            self.role_repo.add_user(user, role)
        except IntegrityError as e:
            raise MembershipConflictError(
                f"Membership of '{user.username}' in role '{role.name}' was changed concurrently."
            ) from e
        logger.info("사용자 '%s'을(를) 역할 '%s'에 추가", user.username, role.name)
        return {"username": user.username, "role_name": role.name}

    def remove_user_from_role(self, username: str, role_name: str) -> bool:
        """
        사용자를 역할에서 제거합니다. 멤버가 아니었다면 아무 작업도 하지 않습니다.

        Raises:
            UserNotFoundError: 사용자를 찾을 수 없을 때.
            RoleNotFoundError: 역할을 찾을 수 없을 때.
        """
        return self.remove_user_from_roles(username, [role_name])

    def remove_user_from_roles(self, username: str, role_names: Iterable[str]) -> bool:
        """
        사용자를 여러 역할에서 한 번에 제거합니다.
        모든 역할이 존재하는지 먼저 확인하므로, 하나라도 없으면 아무것도 제거되지 않습니다.

        Raises:
            UserNotFoundError: 사용자를 찾을 수 없을 때.
            RoleNotFoundError: 역할 중 하나라도 찾을 수 없을 때.
        """
        user = self._get_user_or_raise(username)
        roles = [self._get_role_or_raise(name) for name in role_names]
        for role in roles:
            if self.role_repo.remove_user(user, role):
                logger.info("사용자 '%s'을(를) 역할 '%s'에서 제거", user.username, role.name)
        return True

    def get_user_roles(self, username: str) -> List[Dict[str, str]]:
        """
        사용자가 속한 역할 목록을 조회합니다.

        Raises:
            UserNotFoundError: 사용자를 찾을 수 없을 때.
        """
        user = self._get_user_or_raise(username)
        return [
            {"username": user.username, "role_name": r.name}
            for r in self.role_repo.list_roles_for_user(user)
        ]

    def get_users_in_role(self, role_name: str) -> List[Dict[str, str]]:
        """
        역할에 속한 사용자 목록을 조회합니다.

        Raises:
            RoleNotFoundError: 역할을 찾을 수 없을 때.
        """
        role = self._get_role_or_raise(role_name)
        return [
            {"role_name": role.name, "username": u.username}
            for u in self.role_repo.list_users_in_role(role)
        ]

    def is_in_role(self, username: str, role_name: str) -> bool:
        """사용자가 역할의 멤버인지 확인합니다. 사용자나 역할이 없으면 False입니다."""
        user = self.user_repo.find_by_username(username or "")
        role = self.role_repo.find_by_name(role_name or "")
        if not user or not role:
            return False
        return any(r.id == role.id for r in self.role_repo.list_roles_for_user(user))

    # --------------------------------------------------------------------------
    ## 권한 관리
    # --------------------------------------------------------------------------

    def add_permission_to_role(self, role_name: str, permission_id: str) -> Dict[str, str]:
        """
        역할에 권한을 연결합니다. 이미 연결되어 있으면 중복 없이 성공합니다.

        Raises:
            RoleNotFoundError: 역할을 찾을 수 없을 때.
            PermissionNotFoundError: 권한을 찾을 수 없을 때.
        """
        role = self._get_role_or_raise(role_name)
        permission = self.permission_repo.find_by_id(permission_id or "")
        if not permission:
            raise PermissionNotFoundError(f"Permission '{permission_id}' not found.")

        self.role_repo.add_permission(role, permission)
        logger.info("역할 '%s'에 권한 '%s' 연결", role.name, permission.id)
        return {"role_name": role.name, "permission_id": permission.id}

    def remove_permission_from_role(self, role_name: str, permission_id: str) -> bool:
        """
        역할에서 권한 연결을 제거합니다.

        Raises:
            RoleNotFoundError: 역할을 찾을 수 없을 때.
            RolePermissionNotFoundError: 해당 역할-권한 연결이 없을 때.
        """
        role = self._get_role_or_raise(role_name)
        association = self.role_repo.find_permission(role, permission_id or "")
        if not association:
            raise RolePermissionNotFoundError(
                f"Permission '{permission_id}' is not assigned to role '{role.name}'."
            )
        self.role_repo.remove_permission(association)
        logger.info("역할 '%s'에서 권한 '%s' 제거", role.name, permission_id)
        return True

    def get_role_permissions(self, role_name: str) -> List[Dict[str, str]]:
        """
        역할에 연결된 권한 목록을 조회합니다.

        Raises:
            RoleNotFoundError: 역할을 찾을 수 없을 때.
        """
        role = self._get_role_or_raise(role_name)
        return [
            {"role_name": role.name, "permission_id": p.id}
            for p in self.role_repo.list_permissions(role)
        ]

    def get_user_permissions(self, username: str) -> List[Dict[str, str]]:
        """
        사용자가 속한 모든 역할의 권한을 합쳐서 조회합니다.
        여러 역할에 같은 권한이 있어도 한 번만 포함되며, id 순으로 정렬됩니다.

        Raises:
            UserNotFoundError: 사용자를 찾을 수 없을 때.
        """
        user = self._get_user_or_raise(username)
        return [self._to_permission_dict(p) for p in self.permission_repo.list_for_user(user)]

    def get_application_permissions(self) -> List[Dict[str, str]]:
        """애플리케이션 전체 권한 카탈로그를 조회합니다."""
        return [self._to_permission_dict(p) for p in self.permission_repo.list_all()]

    # --------------------------------------------------------------------------
    ## 로그인 세션
    # --------------------------------------------------------------------------

    def login(self, username: str, password: str, persistent: bool = False) -> Dict[str, str]:
        """
        자격 증명을 검증하고, 성공 시 로그인 세션 토큰을 발급합니다.

        Raises:
            AuthenticationError: 사용자가 없거나, 비밀번호가 틀렸거나, 계정이 잠겨 있을 때.
        """
        user = self.user_repo.find_by_username(username or "")
        if not user or not password or not self.credential_repo.validate_login(user.username, password):
            logger.warning("사용자 '%s' 로그인 실패", username)
            raise AuthenticationError("Login failed.  Check User Name and/or Password.")

        if persistent:
            lifetime = timedelta(days=self.settings.persistent_session_days)
        else:
            lifetime = timedelta(minutes=self.settings.session_lifetime_minutes)
        session = self.credential_repo.issue_session(user.username, datetime.now() + lifetime)

        logger.info("사용자 '%s' 로그인", user.username)
        return {"token": session.token, "username": user.username, "expires_at": _iso(session.expires_at)}

    def logout(self, token: str) -> Dict[str, str]:
        """
        로그인 세션을 폐기합니다.

        Raises:
            TokenInvalidError: 토큰을 찾을 수 없을 때.
        """
        session = self.credential_repo.find_session(token or "")
        if not session:
            raise TokenInvalidError("Token not found or invalid.")
        self.credential_repo.revoke_session(session)
        logger.info("사용자 '%s' 로그아웃", session.username)
        return {"username": session.username}

    def validate_token(self, token: str) -> Dict[str, str]:
        """
        로그인 세션 토큰의 유효성을 검증하고, 유효하면 세션 정보를 반환합니다.
        검증에 성공하면 사용자의 마지막 활동 시각도 갱신됩니다.

        Raises:
            TokenInvalidError: 토큰을 찾을 수 없거나 만료되었을 때.
        """
        session = self.credential_repo.find_session(token or "")
        if not session:
            raise TokenInvalidError("Token not found or invalid.")

        if datetime.now() > session.expires_at:
            self.credential_repo.revoke_session(session)
            raise TokenInvalidError("Token has expired.")

        self.credential_repo.touch(session.username)
        return {"username": session.username, "expires_at": _iso(session.expires_at)}

    def logged_in_user(self, token: str) -> Dict[str, Any]:
        """현재 로그인한 사용자의 이름과 인증 여부를 반환합니다."""
        session = self.validate_token(token)
        return {"name": session["username"], "is_authenticated": True}
