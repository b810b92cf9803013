"""사용자, 역할, 권한을 관리하는 계정 관리 서비스."""
