# /gottadoit/dependencies/org.py

import re
from fastapi import HTTPException, Path, status

# Organization and user identifiers arrive as path parameters. There is no
# authentication: the organization is a namespacing key and the user id is
# trusted as sent by the client. They are still normalized and checked so they
# can be used safely as MongoDB keys.

_IDENTIFIER = re.compile(r"^[A-Za-z0-9_.@\-]{1,128}$")


def _clean_identifier(value: str, kind: str) -> str:
    cleaned = value.strip() if isinstance(value, str) else ""
    if not cleaned or not _IDENTIFIER.match(cleaned):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid {kind} identifier"
        )
    return cleaned


def get_org_id(org_id: str = Path(..., description="Organization namespace")) -> str:
    """
    Normalize the organization id from the URL.

    Raises:
        HTTPException 422: If the id is empty or contains unsupported characters
    """
    return _clean_identifier(org_id, "organization")


def get_user_id(user_id: str = Path(..., description="User whose onboarding progress is addressed")) -> str:
    return _clean_identifier(user_id, "user")
