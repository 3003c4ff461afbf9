"""
Collaborateur 'élèves': contact, frais par défaut et devise par défaut du payeur.
"""
from typing import List, Optional
import logging

import schoolpay.infra.supabase_client as supabase_client
from .exceptions import AmbiguousSubject, SubjectNotFound, ValidationError
from .models import Subject

logger = logging.getLogger(__name__)

TABLE = "students"
COLUMNS = "id, name, phoneno, chat_id, classfee, classfee_currency"

# module schoolpay.payments.subjects
def get_subject(subject_id: int) -> Optional[Subject]:
    res = (
        supabase_client.get_service_supabase()
        .table(TABLE)
        .select(COLUMNS)
        .eq("id", subject_id)
        .limit(1)
        .execute()
    )
    rows = res.data or []
    return Subject.from_row(rows[0]) if rows else None


def find_subjects_by_chat_id(chat_id: str) -> List[Subject]:
    res = (
        supabase_client.get_service_supabase()
        .table(TABLE)
        .select(COLUMNS)
        .eq("chat_id", chat_id)
        .execute()
    )
    return [Subject.from_row(r) for r in (res.data or [])]


def resolve_subject(subject_id: Optional[int], chat_id: Optional[str]) -> Subject:
    """
    Identifie l'élève payeur.
    - studentId prioritaire; s'il est fourni avec chatId, les deux doivent correspondre.
    - chatId seul partagé par plusieurs élèves: erreur explicite (jamais de choix implicite).
    """
    if not subject_id and not chat_id:
        raise ValidationError("studentId or chatId is required")

    if subject_id:
        subject = get_subject(subject_id)
        if subject and chat_id and subject.chat_id != chat_id:
            subject = None
    else:
        candidates = find_subjects_by_chat_id(chat_id)
        if len(candidates) > 1:
            logger.warning(
                "payments.subjects.resolve_subject %s students share chat_id=%s", len(candidates), chat_id
            )
            raise AmbiguousSubject(
                "Multiple students found with this chatId. Please provide studentId explicitly.",
                details={"students": [{"id": s.id, "name": s.name} for s in candidates]},
            )
        subject = candidates[0] if candidates else None

    if subject is None:
        raise SubjectNotFound("Student not found or access denied")
    return subject
