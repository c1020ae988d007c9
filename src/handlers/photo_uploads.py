"""
Upload handlers: presigned photo and branding uploads, and adding photo quota.

Every presigned photo upload first reserves one slot of the event's photo
quota by appending the file name to the event's `tokens` list under the
condition `size(tokens) < number_of_photos`.
"""

from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError

# Handle both Lambda (absolute) and unit test (relative) imports
try:  # pragma: no cover
    from utils.api_types import get_body
    from utils.constants import (
        BRANDING_TYPES,
        MAX_FILES_PER_REQUEST,
        MAX_UPLOAD_SIZE,
        VERSIONED_BRANDING_TYPES,
        EventImagesStatus,
        Permission,
    )
    from utils.dynamodb import MutationOutcome, attempt_update, tables
    from utils.errors import AppError, ErrorCode
    from utils.ids import now_ms
    from utils.ledger import (
        Compensations,
        debit_tokens,
        mark_handshake_used,
        read_handshake_tokens,
        refund_tokens,
        release_handshake,
    )
    from utils.logging import get_logger
    from utils.middleware import api_handler, require_csrf, require_permission
    from utils.responses import ApiResponse, FileResult, build_response
    from utils.storage import asset_key, delete_keys, photo_key, presign_put
    from utils.tokens import get_caller
    from utils.validation import validate_non_negative
except ModuleNotFoundError:  # pragma: no cover
    from ..utils.api_types import get_body
    from ..utils.constants import (
        BRANDING_TYPES,
        MAX_FILES_PER_REQUEST,
        MAX_UPLOAD_SIZE,
        VERSIONED_BRANDING_TYPES,
        EventImagesStatus,
        Permission,
    )
    from ..utils.dynamodb import MutationOutcome, attempt_update, tables
    from ..utils.errors import AppError, ErrorCode
    from ..utils.ids import now_ms
    from ..utils.ledger import (
        Compensations,
        debit_tokens,
        mark_handshake_used,
        read_handshake_tokens,
        refund_tokens,
        release_handshake,
    )
    from ..utils.logging import get_logger
    from ..utils.middleware import api_handler, require_csrf, require_permission
    from ..utils.responses import ApiResponse, FileResult, build_response
    from ..utils.storage import asset_key, delete_keys, photo_key, presign_put
    from ..utils.tokens import get_caller
    from ..utils.validation import validate_non_negative

logger = get_logger(__name__)


def _valid_size(size: Any) -> bool:
    return isinstance(size, (int, float)) and not isinstance(size, bool) and 0 < size <= MAX_UPLOAD_SIZE


def reserve_upload_slot(organization: str, event_id: str, file_name: str) -> FileResult:
    """
    Reserve one photo slot of an event for a file.

    Returns:
        FileResult with success=True, or the reason the slot was refused:
        "limit" when the quota is used up, "duplicate" when the file already
        holds a slot, err=True for anything else
    """
    result = FileResult(success=False, err=False, fileName=file_name, reason=None, presignUrl=None)
    key = {"organization": organization, "id": event_id}

    mutation = attempt_update(
        tables.events,
        key,
        "SET #tokens = list_append(#tokens, :token), lastUpdated = :lastUpdated",
        "size(#tokens) < number_of_photos AND NOT contains(#tokens, :tokenstr)",
        names={"#tokens": "tokens"},
        values={":token": [file_name], ":tokenstr": file_name, ":lastUpdated": now_ms()},
    )

    if mutation["outcome"] == MutationOutcome.SUCCESS:
        result["success"] = True
        return result

    if mutation["outcome"] == MutationOutcome.ERROR:
        logger.error("Failed to reserve upload slot", event_id=event_id, error=str(mutation.get("error")))
        result["err"] = True
        return result

    # Precondition failed: find out which part of it
    item = tables.events.get_item(Key=key).get("Item")
    if not item:
        result["err"] = True
        return result

    reserved: List[str] = list(item.get("tokens", []))
    if int(item.get("number_of_photos", 0)) <= len(reserved):
        result["reason"] = "limit"
    elif file_name in reserved:
        result["reason"] = "duplicate"
    else:
        result["err"] = True
    return result


def presign_photo(organization: str, event_id: str, file: Dict[str, Any]) -> FileResult:
    """Reserve a slot for one file and presign its upload."""
    file_name = str(file["fileName"])
    result = reserve_upload_slot(organization, event_id, file_name)
    if not result["success"]:
        return result

    try:
        result["presignUrl"] = presign_put(
            photo_key("original", organization, event_id, file_name), int(file["fileSize"])
        )
    except ClientError as e:
        logger.error("Failed to presign upload", file_name=file_name, error=str(e))
        result.update(success=False, err=True, reason="presign")
    return result


@api_handler(require_csrf, require_permission(Permission.CREATE_EVENTS))
def photo_presign_url(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Presign photo uploads for an event.

    Body: { files: [{ fileName, fileSize }], folderName: eventId }

    Files are handled in order. Processing stops at the first file refused
    because the event's quota is used up; the response then carries
    reason "limit" and no further URLs.
    """
    caller = get_caller(event)
    body = get_body(event)
    files = body.get("files")
    event_id = body.get("folderName")

    if not files or not event_id:
        raise AppError(ErrorCode.INVALID_INPUT, "fileNames or folderName not provided")
    if not isinstance(files, list) or len(files) > MAX_FILES_PER_REQUEST:
        raise AppError(ErrorCode.INVALID_INPUT, "fileNames is not an array or is too long")

    valid_files = [
        f for f in files if isinstance(f, dict) and f.get("fileName") and _valid_size(f.get("fileSize"))
    ]
    if not valid_files:
        raise AppError(ErrorCode.INVALID_INPUT, "no valid files")

    results: List[FileResult] = []
    limit_reached = False
    for file in valid_files:
        result = presign_photo(caller["organization"], str(event_id), file)
        if result.get("reason") == "limit":
            limit_reached = True
            break
        results.append(result)

    logger.info(
        "Presigned photo uploads",
        event_id=event_id,
        requested=len(valid_files),
        granted=sum(1 for r in results if r["success"]),
        limit_reached=limit_reached,
    )

    body_out: Dict[str, Any] = {
        "success": not limit_reached and all(r["success"] for r in results),
        "err": any(r["err"] for r in results),
        "results": results,
    }
    if limit_reached:
        body_out["reason"] = "limit"
    return build_response(body_out)


def _bump_asset_version(organization: str, event_id: Optional[str], asset_type: str) -> int:
    """Increment the version counter of a branding asset and return the new value."""
    attribute = f"{asset_type}Version"
    table = tables.events if event_id else tables.organizations
    key = {"organization": organization, "id": event_id} if event_id else {"id": organization}

    result = attempt_update(
        table,
        key,
        "SET #version = if_not_exists(#version, :zero) + :one",
        "attribute_exists(#id)",
        names={"#version": attribute, "#id": "id"},
        values={":zero": 0, ":one": 1},
        return_values="UPDATED_NEW",
    )
    if result["outcome"] == MutationOutcome.PRECONDITION_FAILED:
        raise AppError(ErrorCode.NOT_FOUND, "Event not found" if event_id else "Organization not found")
    if result["outcome"] == MutationOutcome.ERROR:
        raise result["error"]  # type: ignore[misc]
    return int(result["attributes"][attribute])


def _set_organization_flag(organization: str, asset_type: str, value: bool) -> None:
    tables.organizations.update_item(
        Key={"id": organization},
        UpdateExpression="SET #flag = :value",
        ExpressionAttributeNames={"#flag": asset_type},
        ExpressionAttributeValues={":value": value},
    )


def _remove_organization_asset(organization: str, asset_type: str) -> None:
    delete_keys(
        [
            asset_key("original", organization, asset_type),
            asset_key("resized", organization, asset_type),
        ]
    )
    _set_organization_flag(organization, asset_type, False)
    logger.info("Removed organization asset", organization=organization, asset_type=asset_type)


def _delete_previous_version(organization: str, event_id: str, asset_type: str, version: int) -> None:
    previous = f"{asset_type}-{version - 1}"
    try:
        delete_keys(
            [
                asset_key("original", organization, previous, event_id),
                asset_key("resized", organization, previous, event_id),
            ]
        )
    except ClientError as e:
        logger.warning("Failed to delete previous asset version", asset=previous, error=str(e))


@api_handler(require_csrf)
def branding_presign_url(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Presign an organization or event branding asset upload.

    Body: { file: { fileName, fileSize }, type, eventId?, remove? }

    With remove=true and no eventId, the organization asset is deleted
    instead. Logo and main image uploads are versioned so clients never see
    a stale cached image.
    """
    caller = get_caller(event)
    organization = caller["organization"]
    body = get_body(event)
    file = body.get("file")
    asset_type = body.get("type")
    event_id: Optional[str] = body.get("eventId") or None

    if asset_type in BRANDING_TYPES and body.get("remove") and not event_id:
        _remove_organization_asset(organization, asset_type)
        return build_response({"success": True, "err": False})

    if not file or not asset_type:
        raise AppError(ErrorCode.INVALID_INPUT, "fileName or type not provided")
    if asset_type not in BRANDING_TYPES or not isinstance(file, dict) or not _valid_size(file.get("fileSize")):
        raise AppError(ErrorCode.INVALID_INPUT, "file is not valid, unsupported type or too large")

    version: Optional[int] = None
    asset_name = asset_type
    if asset_type in VERSIONED_BRANDING_TYPES:
        version = _bump_asset_version(organization, event_id, asset_type)
        asset_name = f"{asset_type}-{version}"

    upload_url = presign_put(asset_key("original", organization, asset_name, event_id), int(file["fileSize"]))

    if not event_id:
        _set_organization_flag(organization, asset_type, True)
    elif version is not None and version > 1:
        _delete_previous_version(organization, event_id, asset_type, version)

    logger.info("Presigned branding upload", organization=organization, asset=asset_name, event_id=event_id)
    return build_response({"success": True, "err": False, "uploadUrl": upload_url})


@api_handler(require_csrf, require_permission(Permission.MANAGE_EVENTS))
def add_images(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Increase an event's photo quota.

    Body: { id: eventId, thtk?, creditsToUse? }

    The handshake is consumed and the tokens debited before the event update;
    both are restored if the update fails.
    """
    caller = get_caller(event)
    organization = caller["organization"]
    body = get_body(event)

    credits_to_use = validate_non_negative("creditsToUse", body.get("creditsToUse"))
    event_id = body.get("id")
    if not event_id:
        raise AppError(ErrorCode.INVALID_INPUT, "missing required fields")

    thtk = body.get("thtk")
    handshake_tokens = read_handshake_tokens(thtk, organization)
    number_of_photos = handshake_tokens + credits_to_use
    if number_of_photos <= 0:
        raise AppError(ErrorCode.INVALID_INPUT, "No photos to add")

    compensations = Compensations()
    try:
        if handshake_tokens:
            mark_handshake_used(thtk, organization)
            compensations.add("release handshake", lambda: release_handshake(thtk, organization))
        if credits_to_use:
            debit_tokens(organization, credits_to_use)
            compensations.add("refund tokens", lambda: refund_tokens(organization, credits_to_use))

        result = attempt_update(
            tables.events,
            {"organization": organization, "id": event_id},
            "SET number_of_photos = number_of_photos + :n, imagesStatus = :status",
            "attribute_exists(#id)",
            names={"#id": "id"},
            values={":n": number_of_photos, ":status": EventImagesStatus.UPLOADING},
        )
        if result["outcome"] == MutationOutcome.PRECONDITION_FAILED:
            raise AppError(ErrorCode.NOT_FOUND, "Event not found")
        if result["outcome"] == MutationOutcome.ERROR:
            raise result["error"]  # type: ignore[misc]
    except (AppError, ClientError):
        compensations.run()
        raise

    logger.info("Added photos to event", event_id=event_id, number_of_photos=number_of_photos)
    return build_response({"success": True, "numberOfPhotosToCreate": number_of_photos})
