# account_admin/app.py
from socketserver import ThreadingMixIn
from urllib.parse import parse_qs, unquote
from wsgiref.simple_server import WSGIServer, make_server
import json
import logging
import re
import sys

from sqlalchemy.orm import sessionmaker

from account_admin.config import Settings, get_settings
from account_admin.database.database import SessionLocal, session_scope
from account_admin.database.db_init import initialize_db
from account_admin.repositories.sqlalchemy import (
    SqlalchemyCredentialRepository, SqlalchemyPermissionRepository,
    SqlalchemyRoleRepository, SqlalchemyUserRepository
)
from account_admin.services.identity_service import IdentityService
from account_admin.services.exceptions import (
    AccessDeniedError, AuthenticationError, ConflictError, NotFoundError,
    PasswordChangeError, TokenInvalidError, ValidationError
)

logger = logging.getLogger(__name__)

ROUTE_PREFIX = "/rpc/account"

# 접근 수준
ANONYMOUS, AUTHENTICATED, ADMIN = "anonymous", "authenticated", "admin"

# --------------------------------------------------------------------------
## 요청 처리 유틸리티 함수
# --------------------------------------------------------------------------

# 요청 본문에서 문자열이어야 하는 필드
STRING_FIELDS = (
    "username", "full_name", "password", "email", "role_name",
    "permission_id", "old_password", "new_password",
)

def get_request_data(environ):
    try:
        content_length = int(environ.get("CONTENT_LENGTH") or 0)
        data = json.loads(environ["wsgi.input"].read(content_length)) if content_length > 0 else {}
    except (ValueError, json.JSONDecodeError):
        raise ValueError("Invalid or missing JSON body.")
    if not isinstance(data, dict):
        raise ValueError("JSON body must be an object.")

    for field in STRING_FIELDS:
        value = data.get(field)
        if value is not None and not isinstance(value, str):
            raise ValueError(f"'{field}' must be a string.")
    role_names = data.get("role_names")
    if role_names is not None and (
        not isinstance(role_names, list) or not all(isinstance(name, str) for name in role_names)
    ):
        raise ValueError("'role_names' must be a list of strings.")
    return data

def get_id_arg(environ, path_value):
    """경로의 {id} 또는 쿼리 문자열의 ?id= 값을 반환합니다."""
    if path_value:
        return unquote(path_value)
    query = parse_qs(environ.get("QUERY_STRING", ""))
    values = query.get("id")
    if not values:
        raise ValueError("Missing 'id' parameter.")
    return values[0]

def authorize(environ, access, settings):
    if access == ANONYMOUS:
        return None
    auth_token = environ.get('HTTP_X_AUTH_TOKEN')
    if not auth_token:
        raise TokenInvalidError("Missing 'X-Auth-Token' header.")
    identity_service = environ['services']['identity']
    token_data = identity_service.validate_token(auth_token)
    if access == ADMIN and not identity_service.is_in_role(token_data['username'], settings.admin_role):
        raise AccessDeniedError(f"Role '{settings.admin_role}' is required.")
    return token_data

# 하위 클래스가 먼저 매칭되도록 순서를 유지해야 합니다.
ERROR_STATUS = [
    (TokenInvalidError, "401 Unauthorized"),
    (AccessDeniedError, "403 Forbidden"),
    (NotFoundError, "404 Not Found"),
    (ValidationError, "409 Conflict"),
    (ConflictError, "409 Conflict"),
    (ValueError, "400 Bad Request"),
]

# 응답은 오류지만 트랜잭션은 커밋해야 하는 예외.
# 로그인/비밀번호 변경 실패 횟수와 잠금, 만료된 세션 삭제가 이 경우에 해당합니다.
COMMITTED_ERRORS = (AuthenticationError, PasswordChangeError, TokenInvalidError)

def handle_exception(e):
    for error_type, status in ERROR_STATUS:
        if isinstance(e, error_type):
            return status, json.dumps({"error": str(e)})
    logger.exception("Unhandled error while processing request")
    return "500 Internal Server Error", json.dumps({"error": "Internal Server Error"})

# --------------------------------------------------------------------------
## 핸들러 함수
# --------------------------------------------------------------------------

def get_users_handler(environ, *args):
    users = environ['services']['identity'].list_users()
    return '200 OK', json.dumps(users)

def get_user_handler(environ, user_id=None):
    user = environ['services']['identity'].get_user(get_id_arg(environ, user_id))
    return '200 OK', json.dumps(user)

def get_expanded_user_handler(environ, user_id=None):
    user = environ['services']['identity'].get_expanded_user(get_id_arg(environ, user_id))
    return '200 OK', json.dumps(user)

def get_roles_handler(environ, *args):
    roles = environ['services']['identity'].list_roles()
    return '200 OK', json.dumps(roles)

def get_user_roles_handler(environ, user_id=None):
    roles = environ['services']['identity'].get_user_roles(get_id_arg(environ, user_id))
    return '200 OK', json.dumps(roles)

def get_application_permissions_handler(environ, *args):
    permissions = environ['services']['identity'].get_application_permissions()
    return '200 OK', json.dumps(permissions)

def get_user_permissions_handler(environ, user_id=None):
    permissions = environ['services']['identity'].get_user_permissions(get_id_arg(environ, user_id))
    return '200 OK', json.dumps(permissions)

def get_role_permissions_handler(environ, role_name=None):
    permissions = environ['services']['identity'].get_role_permissions(get_id_arg(environ, role_name))
    return '200 OK', json.dumps(permissions)

def get_users_in_role_handler(environ, role_name=None):
    users = environ['services']['identity'].get_users_in_role(get_id_arg(environ, role_name))
    return '200 OK', json.dumps(users)

def create_user_handler(environ, *args):
    data = get_request_data(environ)
    user = environ['services']['identity'].create_user(
        data.get('username'), data.get('full_name'), data.get('password'), data.get('email')
    )
    return '201 Created', json.dumps(user)

def create_role_handler(environ, *args):
    data = get_request_data(environ)
    role = environ['services']['identity'].create_role(data.get('role_name'))
    return '201 Created', json.dumps(role)

def update_user_handler(environ, *args):
    data = get_request_data(environ)
    user = environ['services']['identity'].update_user(
        data.get('username'),
        data.get('full_name'),
        data.get('email'),
        password=data.get('password'),
        unlock=bool(data.get('unlock', False)),
    )
    return '200 OK', json.dumps(user)

def add_permission_to_role_handler(environ, *args):
    data = get_request_data(environ)
    association = environ['services']['identity'].add_permission_to_role(
        data.get('role_name'), data.get('permission_id')
    )
    return '200 OK', json.dumps(association)

def remove_permission_from_role_handler(environ, *args):
    data = get_request_data(environ)
    environ['services']['identity'].remove_permission_from_role(data.get('role_name'), data.get('permission_id'))
    return '204 No Content', ''

def add_user_to_role_handler(environ, *args):
    data = get_request_data(environ)
    membership = environ['services']['identity'].add_user_to_role(data.get('username'), data.get('role_name'))
    return '200 OK', json.dumps(membership)

def remove_user_from_role_handler(environ, *args):
    data = get_request_data(environ)
    environ['services']['identity'].remove_user_from_role(data.get('username'), data.get('role_name'))
    return '204 No Content', ''

def remove_user_from_roles_handler(environ, *args):
    data = get_request_data(environ)
    environ['services']['identity'].remove_user_from_roles(data.get('username'), data.get('role_names') or [])
    return '204 No Content', ''

def delete_role_handler(environ, *args):
    data = get_request_data(environ)
    environ['services']['identity'].delete_role(data.get('role_name'))
    return '204 No Content', ''

def delete_user_handler(environ, *args):
    data = get_request_data(environ)
    environ['services']['identity'].delete_user(data.get('username'))
    return '204 No Content', ''

def change_password_handler(environ, *args):
    data = get_request_data(environ)
    user = environ['services']['identity'].change_password(
        data.get('username'), data.get('old_password'), data.get('new_password')
    )
    return '200 OK', json.dumps(user)

def unlock_user_handler(environ, user_id=None):
    unlocked = environ['services']['identity'].unlock_user(get_id_arg(environ, user_id))
    return '200 OK', json.dumps(unlocked)

def login_handler(environ, *args):
    data = get_request_data(environ)
    session = environ['services']['identity'].login(
        data.get('username'), data.get('password'), bool(data.get('persistent', False))
    )
    return '200 OK', json.dumps(session)

def logout_handler(environ, *args):
    auth_token = environ.get('HTTP_X_AUTH_TOKEN')
    if not auth_token:
        raise TokenInvalidError("Missing 'X-Auth-Token' header.")
    user = environ['services']['identity'].logout(auth_token)
    return '200 OK', json.dumps(user)

def is_authenticated_handler(environ, *args):
    return '200 OK', json.dumps(True)

def logged_in_user_handler(environ, *args):
    user = environ['services']['identity'].logged_in_user(environ['HTTP_X_AUTH_TOKEN'])
    return '200 OK', json.dumps(user)

_ID = r'(?:/([^/]+))?'

ROUTES = [
    ('GET', r'^/GetUsers$', get_users_handler, ADMIN),
    ('GET', rf'^/GetUser{_ID}$', get_user_handler, ADMIN),
    ('GET', rf'^/GetExpandedUser{_ID}$', get_expanded_user_handler, ADMIN),
    ('GET', r'^/GetRoles$', get_roles_handler, ADMIN),
    ('GET', rf'^/GetUserRoles{_ID}$', get_user_roles_handler, ADMIN),
    ('GET', r'^/GetApplicationPermissions$', get_application_permissions_handler, ADMIN),
    ('GET', rf'^/GetUserPermissions{_ID}$', get_user_permissions_handler, ADMIN),
    ('GET', rf'^/GetRolePermissions{_ID}$', get_role_permissions_handler, ADMIN),
    ('GET', rf'^/GetUsersInRole{_ID}$', get_users_in_role_handler, ADMIN),
    ('POST', r'^/CreateUser$', create_user_handler, ADMIN),
    ('POST', r'^/CreateRole$', create_role_handler, ADMIN),
    ('PUT', r'^/UpdateUser$', update_user_handler, ADMIN),
    ('POST', r'^/AddPermissionToRole$', add_permission_to_role_handler, ADMIN),
    ('POST', r'^/RemovePermissionFromRole$', remove_permission_from_role_handler, ADMIN),
    ('POST', r'^/AddUserToRole$', add_user_to_role_handler, ADMIN),
    ('POST', r'^/RemoveUserFromRole$', remove_user_from_role_handler, ADMIN),
    ('POST', r'^/RemoveUserFromRoles$', remove_user_from_roles_handler, ADMIN),
    ('POST', r'^/DeleteRole$', delete_role_handler, ADMIN),
    ('POST', r'^/DeleteUser$', delete_user_handler, ADMIN),
    ('PUT', r'^/ChangePassword$', change_password_handler, ADMIN),
    ('PUT', rf'^/UnlockUser{_ID}$', unlock_user_handler, ADMIN),
    ('POST', r'^/Login$', login_handler, ANONYMOUS),
    ('POST', r'^/Logout$', logout_handler, ANONYMOUS),
    ('GET', r'^/IsAuthenticated$', is_authenticated_handler, AUTHENTICATED),
    ('GET', r'^/LoggedInUser$', logged_in_user_handler, AUTHENTICATED),
]

# --------------------------------------------------------------------------
## WSGI 애플리케이션 (의존성 주입 및 라우팅)
# --------------------------------------------------------------------------

def create_app(session_factory: sessionmaker = None, settings: Settings = None):
    """
    WSGI 애플리케이션을 생성합니다.

    요청마다 새 세션(트랜잭션)을 열어 리포지토리와 서비스를 만들고, 핸들러가 정상 종료되면
    commit, 예외가 발생하면 rollback합니다. COMMITTED_ERRORS는 오류 응답을 돌려주되 commit합니다.
    """
    session_factory = session_factory or SessionLocal
    settings = settings or get_settings()

    def application(environ, start_response):
        try:
            with session_scope(session_factory) as db_session:
                # 1. 의존성 생성 (Repositories -> Services)
                identity_service = IdentityService(
                    SqlalchemyUserRepository(db_session),
                    SqlalchemyRoleRepository(db_session),
                    SqlalchemyPermissionRepository(db_session),
                    SqlalchemyCredentialRepository(db_session, settings),
                    settings,
                )

                # 2. 생성된 서비스 객체를 environ을 통해 핸들러에 전달
                environ['services'] = {'identity': identity_service}

                # 3. 라우팅 및 핸들러 실행
                path = environ.get("PATH_INFO", "")
                method = environ.get("REQUEST_METHOD", "")

                handler, access, path_args = None, None, []
                if path.startswith(ROUTE_PREFIX):
                    action_path = path[len(ROUTE_PREFIX):]
                    for route_method, pattern, route_handler, route_access in ROUTES:
                        if method == route_method and (match := re.match(pattern, action_path)):
                            handler, access, path_args = route_handler, route_access, match.groups()
                            break

                if handler:
                    try:
                        environ['token_data'] = authorize(environ, access, settings)
                        status, response_body = handler(environ, *path_args)
                    except COMMITTED_ERRORS as e:
                        status, response_body = handle_exception(e)
                else:
                    status, response_body = '404 Not Found', json.dumps({'error': 'Not Found'})

        except Exception as e:
            status, response_body = handle_exception(e)

        start_response(status, [("Content-Type", "application/json")])
        return [response_body.encode("utf-8")]

    return application

application = create_app()

# --------------------------------------------------------------------------
## 서버 실행
# --------------------------------------------------------------------------

class ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    """요청마다 별도의 스레드에서 처리하는 WSGI 서버."""
    daemon_threads = True

def main():
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        initialize_db(settings=settings)
        with make_server(settings.host, settings.port, application, server_class=ThreadingWSGIServer) as httpd:
            logger.info("Serving account administration on port %d...", settings.port)
            httpd.serve_forever()
    except Exception as e:
        print(f"Error starting server: {e}", file=sys.stderr)
        sys.exit(1)

if __name__ == "__main__":
    main()
