"""Data layers report upload route."""
from typing import Any, Dict

from fastapi import APIRouter, File, HTTPException, UploadFile

from domain.data_layers import parse_report, validate_report

router = APIRouter(prefix="/api/data-layers", tags=["data-layers"])


@router.post("/report")
async def upload_data_layers_report(file: UploadFile = File(...)) -> Dict[str, Any]:
    if not file.filename:
        raise HTTPException(400, "No file provided")
    content = await file.read()
    if not content:
        raise HTTPException(400, "Uploaded file is empty")

    report = parse_report(content, filename=file.filename)
    return {
        "filename": file.filename,
        "report": report.to_dict(),
        "validation_errors": validate_report(report),
    }
