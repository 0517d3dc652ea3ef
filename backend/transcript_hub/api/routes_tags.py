from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db.database import get_db
from ..models.transcription import Transcription
from .deps import get_current_user

router = APIRouter()


@router.get("")
async def list_tags(user_email: str = Depends(get_current_user), db: Session = Depends(get_db)) -> dict:
    """All distinct tags the user has attached, in first-seen order."""
    rows = db.query(Transcription.tags).filter(Transcription.user_email == user_email).all()
    tags: dict[str, None] = {}
    for (row_tags,) in rows:
        for tag in row_tags or []:
            tags.setdefault(tag, None)
    return {"tags": list(tags)}
