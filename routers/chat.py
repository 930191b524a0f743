from fastapi import APIRouter, Depends, Query, Security
import logging

from models.user import Principal
from routers.documents import get_document_service
from services.chat import answer_question
from services.documents import DocumentService
from utils.history import append_history_entry
from utils.jwt import get_current_principal
from utils.logging_config import hash_text
from utils.response import api_response

router = APIRouter(prefix="/documents", tags=["chat"])
logger = logging.getLogger("api.chat")


@router.post("/{document_id}/chat")
def ask_question(
    document_id: str,
    question: str = Query(..., min_length=3, max_length=2000),
    principal: Principal = Security(get_current_principal),
    service: DocumentService = Depends(get_document_service),
):
    document = service.get(principal, document_id)
    answer = answer_question(document, question)
    logger.info("answer_generated", extra={"doc_id": document_id, "question_hash": hash_text(question)})

    append_history_entry(principal.id, {
        "document_id": document_id,
        "filename": document.filename,
        "question": question,
        "answer": answer,
    })

    return api_response(
        data={"answer": answer, "document_id": document_id},
        message="Answer generated successfully.",
        status_code=200,
    )
