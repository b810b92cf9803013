# tests/services/test_identity_service.py
import pytest
from datetime import datetime, timedelta
from unittest.mock import MagicMock, ANY

from sqlalchemy.exc import IntegrityError

from account_admin.services.identity_service import IdentityService
from account_admin.services.exceptions import *
from account_admin.repositories.interfaces import (
    IUserRepository, IRoleRepository, IPermissionRepository, ICredentialRepository
)
from account_admin.database import models

# ===================================================================
#  Fixture 설정
# ===================================================================

CREDENTIAL = {
    "email": "a@x.com",
    "is_locked_out": False,
    "is_online": False,
    "creation_date": datetime(2024, 1, 1, 9, 0, 0),
    "last_login_date": None,
    "last_password_change_date": datetime(2024, 1, 1, 9, 0, 0),
}

@pytest.fixture
def mock_user_repo() -> MagicMock:
    """IUserRepository에 대한 모의 객체를 생성합니다."""
    return MagicMock(spec=IUserRepository)

@pytest.fixture
def mock_role_repo() -> MagicMock:
    """IRoleRepository에 대한 모의 객체를 생성합니다."""
    return MagicMock(spec=IRoleRepository)

@pytest.fixture
def mock_permission_repo() -> MagicMock:
    """IPermissionRepository에 대한 모의 객체를 생성합니다."""
    return MagicMock(spec=IPermissionRepository)

@pytest.fixture
def mock_credential_repo() -> MagicMock:
    """ICredentialRepository에 대한 모의 객체를 생성합니다. 기본적으로 모든 비밀번호가 강도 정책을 통과합니다."""
    repo = MagicMock(spec=ICredentialRepository)
    repo.validate_password_strength.return_value = True
    repo.get.return_value = dict(CREDENTIAL)
    return repo

@pytest.fixture
def identity_service(
    mock_user_repo: MagicMock,
    mock_role_repo: MagicMock,
    mock_permission_repo: MagicMock,
    mock_credential_repo: MagicMock,
    settings,
) -> IdentityService:
    """테스트에 사용될 IdentityService 인스턴스를 생성하고, 의존성을 주입합니다."""
    return IdentityService(mock_user_repo, mock_role_repo, mock_permission_repo, mock_credential_repo, settings)

# ===================================================================
#  사용자 관리(User Management) 테스트
# ===================================================================
class TestUserManagement:
    def test_create_user_success(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_credential_repo: MagicMock):
        """사용자 생성 성공 시나리오를 테스트합니다."""
        # === Arrange ===
        # 시나리오: 사용자 이름이 중복되지 않음
        mock_user_repo.find_by_username.return_value = None
        mock_user_repo.create.return_value = models.User(id=1, username="alice", full_name="Alice A")

        # === Act ===
        user = identity_service.create_user("alice", "Alice A", "Secr3t!", "a@x.com")

        # === Assert ===
        assert user["username"] == "alice"
        assert user["full_name"] == "Alice A"
        assert user["email"] == "a@x.com"
        assert user["creation_date"] == "2024-01-01T09:00:00"
        assert "password" not in user
        # 검증: 프로필과 자격 증명이 모두 생성되었는지 확인
        mock_user_repo.create.assert_called_once_with(ANY)
        mock_credential_repo.create.assert_called_once_with("alice", "Secr3t!", "a@x.com")

    def test_create_user_normalizes_username(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_credential_repo: MagicMock):
        """사용자 이름이 소문자로 정규화되는지 테스트합니다."""
        # === Arrange ===
        mock_user_repo.find_by_username.return_value = None
        mock_user_repo.create.side_effect = lambda user: user

        # === Act ===
        user = identity_service.create_user("  Alice ", "Alice A", "Secr3t!", "a@x.com")

        # === Assert ===
        assert user["username"] == "alice"
        mock_user_repo.find_by_username.assert_called_once_with("alice")
        mock_credential_repo.create.assert_called_once_with("alice", "Secr3t!", "a@x.com")

    def test_create_user_fails_if_username_exists(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_credential_repo: MagicMock):
        """사용자 이름이 중복될 경우 UserAlreadyExistsError가 발생하는지 테스트합니다."""
        # === Arrange ===
        mock_user_repo.find_by_username.return_value = models.User(id=1, username="alice")

        # === Act & Assert ===
        with pytest.raises(UserAlreadyExistsError):
            identity_service.create_user("alice", "Alice A", "Secr3t!", "a@x.com")
        # 검증: 아무것도 생성되지 않아야 함
        mock_user_repo.create.assert_not_called()
        mock_credential_repo.create.assert_not_called()

    def test_create_user_race_resolves_to_conflict(self, identity_service: IdentityService, mock_user_repo: MagicMock):
        """중복 검사 이후 다른 요청이 먼저 생성한 경우(유일성 제약 위반) ConflictError가 되는지 테스트합니다."""
        # === Arrange ===
        # 시나리오: 조회 시점에는 없었지만 flush 시점에 유일성 제약에 걸림
        mock_user_repo.find_by_username.return_value = None
        mock_user_repo.create.side_effect = IntegrityError("INSERT INTO users", {}, Exception("UNIQUE constraint failed"))

        # === Act & Assert ===
        with pytest.raises(ConflictError):
            identity_service.create_user("alice", "Alice A", "Secr3t!", "a@x.com")

    def test_create_user_rejects_password_containing_username(self, identity_service: IdentityService, mock_user_repo: MagicMock):
        """비밀번호에 사용자 이름이 포함되면(대소문자 무시) ValidationError가 발생하는지 테스트합니다."""
        # === Act & Assert ===
        with pytest.raises(ValidationError):
            identity_service.create_user("bob", "Bob B", "MyBOBpassword!", "b@x.com")
        mock_user_repo.create.assert_not_called()

    def test_create_user_rejects_weak_password(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_credential_repo: MagicMock):
        """강도 정책을 통과하지 못한 비밀번호를 거부하는지 테스트합니다."""
        # === Arrange ===
        mock_credential_repo.validate_password_strength.return_value = False

        # === Act & Assert ===
        with pytest.raises(InvalidPasswordError):
            identity_service.create_user("alice", "Alice A", "short", "a@x.com")
        mock_credential_repo.validate_password_strength.assert_called_once_with("short")
        mock_user_repo.create.assert_not_called()

    @pytest.mark.parametrize("username, password, error", [
        ("", "Secr3t!", InvalidUserError),
        ("   ", "Secr3t!", InvalidUserError),
        (None, "Secr3t!", InvalidUserError),
        ("alice", "", InvalidPasswordError),
        ("alice", None, InvalidPasswordError),
    ])
    def test_create_user_rejects_empty_input(self, identity_service: IdentityService, username, password, error):
        """사용자 이름이나 비밀번호가 비어 있으면 ValidationError가 발생하는지 테스트합니다."""
        with pytest.raises(error):
            identity_service.create_user(username, "Full Name", password, "x@x.com")

    def test_get_user_not_found(self, identity_service: IdentityService, mock_user_repo: MagicMock):
        """존재하지 않는 사용자 조회 시 UserNotFoundError가 발생하는지 테스트합니다."""
        mock_user_repo.find_by_username.return_value = None

        with pytest.raises(UserNotFoundError):
            identity_service.get_user("ghost")

    def test_get_user_without_credential_is_not_found(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_credential_repo: MagicMock):
        """프로필은 있지만 자격 증명 레코드가 없으면 찾을 수 없는 사용자로 처리되는지 테스트합니다."""
        mock_user_repo.find_by_username.return_value = models.User(id=1, username="alice", full_name="Alice A")
        mock_credential_repo.get.return_value = None

        with pytest.raises(NotFoundError):
            identity_service.get_user("alice")

    def test_list_users_joins_profile_and_credential(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_credential_repo: MagicMock):
        """자격 증명이 없는 사용자는 목록에서 제외되는지 테스트합니다."""
        # === Arrange ===
        mock_user_repo.list_all.return_value = [
            models.User(id=1, username="alice", full_name="Alice A"),
            models.User(id=2, username="orphan", full_name="No Credential"),
        ]
        mock_credential_repo.get.side_effect = lambda name: dict(CREDENTIAL) if name == "alice" else None

        # === Act ===
        users = identity_service.list_users()

        # === Assert ===
        assert [u["username"] for u in users] == ["alice"]

    def test_update_user_unlocks_when_requested(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_credential_repo: MagicMock):
        """잠긴 계정에 unlock을 요청하면 잠금이 해제되고 이름/이메일이 갱신되는지 테스트합니다."""
        # === Arrange ===
        user = models.User(id=1, username="alice", full_name="Alice A")
        mock_user_repo.find_by_username.return_value = user
        mock_credential_repo.get.return_value = dict(CREDENTIAL, is_locked_out=True)

        # === Act ===
        identity_service.update_user("alice", "Alice Updated", "new@x.com", unlock=True)

        # === Assert ===
        mock_credential_repo.unlock.assert_called_once_with("alice")
        mock_credential_repo.update.assert_called_once_with("alice", email="new@x.com")
        mock_user_repo.update.assert_called_once_with(user)
        assert user.full_name == "Alice Updated"
        mock_credential_repo.set_password.assert_not_called()

    def test_update_user_does_not_unlock_unlocked_account(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_credential_repo: MagicMock):
        """잠기지 않은 계정은 unlock 요청이 있어도 unlock을 호출하지 않는지 테스트합니다."""
        mock_user_repo.find_by_username.return_value = models.User(id=1, username="alice", full_name="Alice A")

        identity_service.update_user("alice", "Alice A", "a@x.com", unlock=True)

        mock_credential_repo.unlock.assert_not_called()

    def test_update_user_sets_new_password(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_credential_repo: MagicMock):
        """새 비밀번호가 주어지면 검증 후 적용되는지 테스트합니다."""
        mock_user_repo.find_by_username.return_value = models.User(id=1, username="alice", full_name="Alice A")

        identity_service.update_user("alice", "Alice A", "a@x.com", password="N3w-pass!")

        mock_credential_repo.set_password.assert_called_once_with("alice", "N3w-pass!")

    def test_update_user_rejects_invalid_password_before_any_change(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_credential_repo: MagicMock):
        """새 비밀번호가 유효하지 않으면 아무것도 바꾸지 않고 ValidationError가 발생하는지 테스트합니다."""
        # === Arrange ===
        mock_user_repo.find_by_username.return_value = models.User(id=1, username="alice", full_name="Alice A")

        # === Act & Assert ===
        with pytest.raises(ValidationError):
            identity_service.update_user("alice", "Alice A", "a@x.com", password="alice123!")
        mock_credential_repo.update.assert_not_called()
        mock_user_repo.update.assert_not_called()
        mock_credential_repo.set_password.assert_not_called()

    def test_update_user_not_found(self, identity_service: IdentityService, mock_user_repo: MagicMock):
        """존재하지 않는 사용자 갱신 시 UserNotFoundError가 발생하는지 테스트합니다."""
        mock_user_repo.find_by_username.return_value = None

        with pytest.raises(UserNotFoundError):
            identity_service.update_user("ghost", "Ghost", "g@x.com")

    def test_delete_user_success(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_credential_repo: MagicMock):
        """사용자 삭제 시 프로필과 자격 증명이 모두 삭제되는지 테스트합니다."""
        # === Arrange ===
        mock_user = models.User(id=2, username="alice")
        mock_user_repo.find_by_username.return_value = mock_user

        # === Act ===
        result = identity_service.delete_user("alice")

        # === Assert ===
        assert result is True
        mock_user_repo.delete.assert_called_once_with(mock_user)
        mock_credential_repo.delete.assert_called_once_with("alice")

    def test_delete_missing_user_is_noop(self, identity_service: IdentityService, mock_user_repo: MagicMock):
        """존재하지 않는 사용자 삭제는 예외 없이 성공하는지 테스트합니다."""
        mock_user_repo.find_by_username.return_value = None

        assert identity_service.delete_user("ghost") is True
        mock_user_repo.delete.assert_not_called()

    def test_change_password_success(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_credential_repo: MagicMock):
        """비밀번호 변경 성공 시나리오를 테스트합니다."""
        mock_user_repo.find_by_username.return_value = models.User(id=1, username="alice", full_name="Alice A")
        mock_credential_repo.change_password.return_value = True

        user = identity_service.change_password("alice", "Secr3t!", "N3w-pass!")

        assert user["username"] == "alice"
        mock_credential_repo.change_password.assert_called_once_with("alice", "Secr3t!", "N3w-pass!")

    def test_change_password_wrong_old_password(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_credential_repo: MagicMock):
        """기존 비밀번호가 틀리면 ConflictError("Password change failed")가 발생하는지 테스트합니다."""
        mock_user_repo.find_by_username.return_value = models.User(id=1, username="alice")
        mock_credential_repo.change_password.return_value = False

        with pytest.raises(ConflictError, match="Password change failed"):
            identity_service.change_password("alice", "wrong", "N3w-pass!")

    def test_change_password_rejects_password_containing_username(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_credential_repo: MagicMock):
        """새 비밀번호가 사용자 이름을 포함하면 자격 증명 시스템을 호출하지 않고 실패하는지 테스트합니다."""
        mock_user_repo.find_by_username.return_value = models.User(id=1, username="alice")

        with pytest.raises(PasswordChangeError):
            identity_service.change_password("alice", "Secr3t!", "ALICE-rules!")
        mock_credential_repo.change_password.assert_not_called()

    def test_unlock_user_returns_false_when_missing(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_credential_repo: MagicMock):
        """존재하지 않는 사용자의 잠금 해제는 False를 반환하는지 테스트합니다."""
        mock_user_repo.find_by_username.return_value = None

        assert identity_service.unlock_user("ghost") is False
        mock_credential_repo.unlock.assert_not_called()

# ===================================================================
#  역할 관리(Role Management) 테스트
# ===================================================================
class TestRoleManagement:
    def test_create_role_success(self, identity_service: IdentityService, mock_role_repo: MagicMock):
        """역할 생성 성공 시나리오를 테스트합니다."""
        mock_role_repo.find_by_name.return_value = None
        mock_role_repo.create.side_effect = lambda role: role

        role = identity_service.create_role("Administrator")

        assert role == {"role_name": "Administrator"}

    def test_create_role_fails_if_name_exists(self, identity_service: IdentityService, mock_role_repo: MagicMock):
        """역할 이름이 중복될 경우 RoleAlreadyExistsError가 발생하는지 테스트합니다."""
        mock_role_repo.find_by_name.return_value = models.Role(id=1, name="Administrator")

        with pytest.raises(RoleAlreadyExistsError):
            identity_service.create_role("administrator")
        mock_role_repo.create.assert_not_called()

    def test_create_role_rejects_empty_name(self, identity_service: IdentityService):
        """빈 역할 이름은 ValidationError가 발생하는지 테스트합니다."""
        with pytest.raises(ValidationError):
            identity_service.create_role(" ")

    def test_delete_role_success(self, identity_service: IdentityService, mock_role_repo: MagicMock):
        """역할 삭제가 리포지토리의 연쇄 삭제로 위임되는지 테스트합니다."""
        role = models.Role(id=3, name="Editors")
        mock_role_repo.find_by_name.return_value = role

        assert identity_service.delete_role("Editors") is True
        mock_role_repo.delete.assert_called_once_with(role)

    def test_delete_role_not_found(self, identity_service: IdentityService, mock_role_repo: MagicMock):
        """존재하지 않는 역할 삭제 시 RoleNotFoundError가 발생하는지 테스트합니다."""
        mock_role_repo.find_by_name.return_value = None

        with pytest.raises(RoleNotFoundError):
            identity_service.delete_role("Ghosts")
        mock_role_repo.delete.assert_not_called()

# ===================================================================
#  멤버십 및 권한(Membership & Permission) 테스트
# ===================================================================
class TestMembershipAndPermissions:
    def test_add_user_to_unknown_role(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_role_repo: MagicMock):
        """존재하지 않는 역할에 사용자를 추가하면 NotFoundError가 발생하는지 테스트합니다."""
        mock_user_repo.find_by_username.return_value = models.User(id=1, username="alice")
        mock_role_repo.find_by_name.return_value = None

        with pytest.raises(RoleNotFoundError):
            identity_service.add_user_to_role("alice", "Ghosts")
        mock_role_repo.add_user.assert_not_called()

    def test_add_unknown_user_to_role(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_role_repo: MagicMock):
        """존재하지 않는 사용자를 역할에 추가하면 UserNotFoundError가 발생하는지 테스트합니다."""
        mock_user_repo.find_by_username.return_value = None

        with pytest.raises(UserNotFoundError):
            identity_service.add_user_to_role("ghost", "Administrator")
        mock_role_repo.add_user.assert_not_called()

    def test_add_user_to_role_race_resolves_to_conflict(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_role_repo: MagicMock):
        """멤버십 flush 시점에 제약 위반이 발생하면 ConflictError가 되는지 테스트합니다."""
        # === Arrange ===
        # 시나리오: 조회 이후 다른 요청이 같은 멤버십을 추가했거나 역할을 삭제함
        mock_user_repo.find_by_username.return_value = models.User(id=1, username="alice")
        mock_role_repo.find_by_name.return_value = models.Role(id=1, name="Editors")
        mock_role_repo.add_user.side_effect = IntegrityError("INSERT INTO user_roles", {}, Exception("FOREIGN KEY constraint failed"))

        # === Act & Assert ===
        with pytest.raises(MembershipConflictError):
            identity_service.add_user_to_role("alice", "Editors")

    def test_remove_user_from_roles_checks_every_role_first(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_role_repo: MagicMock):
        """역할 중 하나라도 없으면 어떤 멤버십도 제거하지 않는지 테스트합니다."""
        # === Arrange ===
        mock_user_repo.find_by_username.return_value = models.User(id=1, username="alice")
        # 시나리오: 첫 번째 역할은 존재하고 두 번째 역할은 없음
        mock_role_repo.find_by_name.side_effect = [models.Role(id=1, name="Editors"), None]

        # === Act & Assert ===
        with pytest.raises(RoleNotFoundError):
            identity_service.remove_user_from_roles("alice", ["Editors", "Ghosts"])
        mock_role_repo.remove_user.assert_not_called()

    def test_remove_user_from_role_when_not_member_is_noop(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_role_repo: MagicMock):
        """멤버가 아닌 사용자를 역할에서 제거해도 성공으로 처리되는지 테스트합니다."""
        mock_user_repo.find_by_username.return_value = models.User(id=1, username="alice")
        mock_role_repo.find_by_name.return_value = models.Role(id=1, name="Editors")
        mock_role_repo.remove_user.return_value = False

        assert identity_service.remove_user_from_role("alice", "Editors") is True

    def test_add_unknown_permission_to_role(self, identity_service: IdentityService, mock_role_repo: MagicMock, mock_permission_repo: MagicMock):
        """존재하지 않는 권한을 연결하면 PermissionNotFoundError가 발생하는지 테스트합니다."""
        mock_role_repo.find_by_name.return_value = models.Role(id=1, name="Administrator")
        mock_permission_repo.find_by_id.return_value = None

        with pytest.raises(PermissionNotFoundError):
            identity_service.add_permission_to_role("Administrator", "P404")
        mock_role_repo.add_permission.assert_not_called()

    def test_remove_missing_permission_association(self, identity_service: IdentityService, mock_role_repo: MagicMock):
        """연결되지 않은 권한을 제거하면 NotFoundError가 발생하는지 테스트합니다."""
        mock_role_repo.find_by_name.return_value = models.Role(id=1, name="Administrator")
        mock_role_repo.find_permission.return_value = None

        with pytest.raises(NotFoundError):
            identity_service.remove_permission_from_role("Administrator", "P1")
        mock_role_repo.remove_permission.assert_not_called()

    def test_expanded_user_keeps_roles_without_permissions(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_role_repo: MagicMock):
        """권한이 없는 역할도 빈 권한 목록과 함께 포함되는지 테스트합니다."""
        # === Arrange ===
        admin = models.Role(id=1, name="Administrator")
        empty = models.Role(id=2, name="Guests")
        mock_user_repo.find_by_username.return_value = models.User(id=1, username="alice", full_name="Alice A")
        mock_role_repo.list_roles_for_user.return_value = [admin, empty]
        mock_role_repo.list_permissions.side_effect = lambda role: (
            [models.Permission(id="P1", name="ManageUsers")] if role is admin else []
        )

        # === Act ===
        user = identity_service.get_expanded_user("alice")

        # === Assert ===
        assert user["roles"] == [
            {"role_name": "Administrator", "permissions": [{"name": "ManageUsers", "id": "P1"}]},
            {"role_name": "Guests", "permissions": []},
        ]

# ===================================================================
#  로그인 세션(Login Session) 테스트
# ===================================================================
class TestLoginSessions:
    def test_login_success(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_credential_repo: MagicMock):
        """로그인 성공 시 토큰이 발급되는지 테스트합니다."""
        # === Arrange ===
        expires_at = datetime.now() + timedelta(minutes=30)
        mock_user_repo.find_by_username.return_value = models.User(id=1, username="alice")
        mock_credential_repo.validate_login.return_value = True
        mock_credential_repo.issue_session.return_value = models.LoginSession(
            token="tok", username="alice", expires_at=expires_at
        )

        # === Act ===
        result = identity_service.login("Alice", "Secr3t!")

        # === Assert ===
        assert result == {"token": "tok", "username": "alice", "expires_at": expires_at.isoformat()}
        mock_credential_repo.validate_login.assert_called_once_with("alice", "Secr3t!")

    def test_login_wrong_password(self, identity_service: IdentityService, mock_user_repo: MagicMock, mock_credential_repo: MagicMock):
        """잘못된 비밀번호로 로그인 실패 시 ConflictError 계열의 AuthenticationError가 발생하는지 테스트합니다."""
        mock_user_repo.find_by_username.return_value = models.User(id=1, username="alice")
        mock_credential_repo.validate_login.return_value = False

        with pytest.raises(ConflictError, match="Login failed"):
            identity_service.login("alice", "wrong")
        mock_credential_repo.issue_session.assert_not_called()

    def test_validate_expired_token(self, identity_service: IdentityService, mock_credential_repo: MagicMock):
        """만료된 토큰은 폐기되고 TokenInvalidError가 발생하는지 테스트합니다."""
        # === Arrange ===
        session = models.LoginSession(token="old", username="alice", expires_at=datetime.now() - timedelta(minutes=1))
        mock_credential_repo.find_session.return_value = session

        # === Act & Assert ===
        with pytest.raises(TokenInvalidError, match="expired"):
            identity_service.validate_token("old")
        mock_credential_repo.revoke_session.assert_called_once_with(session)

    def test_validate_token_refreshes_activity(self, identity_service: IdentityService, mock_credential_repo: MagicMock):
        """유효한 토큰 검증 시 사용자 활동 시각이 갱신되는지 테스트합니다."""
        session = models.LoginSession(token="tok", username="alice", expires_at=datetime.now() + timedelta(minutes=5))
        mock_credential_repo.find_session.return_value = session

        assert identity_service.validate_token("tok")["username"] == "alice"
        mock_credential_repo.touch.assert_called_once_with("alice")

    def test_logout_unknown_token(self, identity_service: IdentityService, mock_credential_repo: MagicMock):
        """존재하지 않는 토큰으로 로그아웃하면 TokenInvalidError가 발생하는지 테스트합니다."""
        mock_credential_repo.find_session.return_value = None

        with pytest.raises(TokenInvalidError):
            identity_service.logout("nope")
