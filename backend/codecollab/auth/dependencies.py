"""FastAPI dependencies for authenticated project routes.

HTTP routes use the same session token lookup as the WebSocket handshake
(cookie, then ``Authorization: Bearer``, then ``token`` query parameter) and
then require membership in the project named by the path.
"""
import logging

from fastapi import Depends, HTTPException, Request

from codecollab.projects import Project, ProjectStoreError

from .tokens import HandshakeError, Identity, decode_token, extract_credential

logger = logging.getLogger(__name__)


async def get_current_identity(request: Request) -> Identity:
    """Authenticate the request's session token.

    Raises:
        HTTPException: 401 if the token is missing or invalid.
    """
    settings = request.app.state.settings
    token = extract_credential(
        request.cookies,
        request.headers,
        request.query_params,
        cookie_name=settings.auth.cookie_name,
        query_param=settings.auth.query_param,
    )
    jwt_secrets = settings.secrets.jwt
    try:
        return decode_token(token, jwt_secrets.secret_key, jwt_secrets.algorithm)
    except HandshakeError as e:
        raise HTTPException(status_code=401, detail=str(e))


async def get_member_project(
    project_id: str,
    request: Request,
    identity: Identity = Depends(get_current_identity),
) -> Project:
    """Load the path's project and require the caller to be a member.

    Raises:
        HTTPException: 404 unknown project, 403 non-member, 503 store down.
    """
    try:
        project = await request.app.state.projects.get_project(project_id)
    except ProjectStoreError as e:
        logger.error(f"[Auth] Error validating project access for {project_id}: {e}")
        raise HTTPException(status_code=503, detail="Error validating project access")

    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    if not project.is_member(identity.id):
        logger.warning(f"[Auth] {identity.id} denied access to project {project_id}")
        raise HTTPException(status_code=403, detail="You do not have access to this project")
    return project
