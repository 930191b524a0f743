from typing import Any, Optional

from fastapi.responses import JSONResponse
from pydantic import BaseModel

from models.document import Document, DocumentListing


class APIResponse(BaseModel):
	data: Any = None
	message: str
	status_code: int


def api_response(data=None, message="Success", status_code=200):
	return JSONResponse(
		status_code=status_code,
		content=APIResponse(data=data, message=message, status_code=status_code).model_dump(mode="json")
	)


def document_data(document: Optional[Document]) -> Optional[dict]:
	# Analysis payload keeps the camelCase shape the model was prompted for
	if document is None:
		return None
	return document.model_dump(mode="json", by_alias=True, exclude={"storage_key"})


def listing_data(listing: DocumentListing) -> dict:
	return {
		"documents": [document_data(d) for d in listing.documents],
		"current": document_data(listing.current),
		"recent": [document_data(d) for d in listing.recent],
	}
