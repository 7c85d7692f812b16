# paperworth/receipts.py
import base64
import logging
import mimetypes
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from . import config
from .api import ApiError
from .categories import DEFAULT_CATEGORY, category_icon, category_id
from .models import Receipt, ReceiptItem
from .utils import parse_datetime, to_local, utcnow

logger = logging.getLogger("paperworth.receipts")

REQUIRED_OCR_FIELDS = ("merchantName", "totalAmount", "dateOfPurchase")
CORE_RECEIPT_FIELDS = {"userId", "merchantName", "totalAmount", "totalExpense",
                       "dateOfPurchase", "category", "imageUrl", "fullText"}

NO_TEXT_MESSAGE = "No additional text extracted."
OCR_ERROR_MESSAGE = "Error processing image. Please try again."

DATE_RANGES = [
    {"id": "all", "name": "All Time"},
    {"id": "this-week", "name": "This Week"},
    {"id": "this-month", "name": "This Month"},
    {"id": "last-month", "name": "Last Month"},
]


class FileValidationError(ValueError):
    pass


class OcrError(Exception):
    pass


# ---------------- Upload validation ----------------
def file_extension(filename: str) -> str:
    if not filename or "." not in filename:
        return ""
    return filename.rsplit(".", 1)[-1].lower()


def validate_receipt_file(filename: str, size: int) -> None:
    if size > config.MAX_UPLOAD_BYTES:
        raise FileValidationError("File size exceeds the 5MB limit")
    if file_extension(filename) not in config.ALLOWED_EXTENSIONS:
        raise FileValidationError("Invalid file type. Please upload an image or PDF")


def to_data_url(data: bytes, filename: str = None) -> str:
    mime = (mimetypes.guess_type(filename)[0] if filename else None) or "image/jpeg"
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


# ---------------- Receipt shaping ----------------
def is_complete_extraction(data: Optional[Dict[str, Any]]) -> bool:
    return bool(data) and all(data.get(field) for field in REQUIRED_OCR_FIELDS)


def standardize_receipt(data: Dict[str, Any]) -> Dict[str, Any]:
    """Copy totalAmount into totalExpense and normalise dateOfPurchase to ISO-8601."""
    receipt = dict(data)
    if receipt.get("totalAmount") is not None and receipt.get("totalExpense") is None:
        receipt["totalExpense"] = receipt["totalAmount"]
    if receipt.get("dateOfPurchase"):
        parsed = parse_datetime(receipt["dateOfPurchase"])
        if parsed is not None:
            receipt["dateOfPurchase"] = parsed.strftime("%Y-%m-%dT%H:%M:%S.000Z")
    return receipt


def build_receipt_payload(user_id, extracted: Dict[str, Any], category: str,
                          image_url: Optional[str] = None, ocr_text: str = "") -> Dict[str, Any]:
    additional = {"fullText": extracted.get("fullText") or ocr_text}
    for key, value in extracted.items():
        if key not in CORE_RECEIPT_FIELDS:
            additional[key] = value
    return {
        "userId": user_id,
        "merchantName": extracted.get("merchantName"),
        "totalAmount": extracted.get("totalAmount"),
        "dateOfPurchase": extracted.get("dateOfPurchase"),
        "category": category,
        "imageUrl": image_url,
        "additionalFields": additional,
    }


def parse_items(items) -> List[Dict[str, Any]]:
    if not items or not isinstance(items, list):
        return []
    return [i.to_dict() if isinstance(i, ReceiptItem) else ReceiptItem.from_value(i).to_dict() for i in items]


def to_display_rows(receipts: List[Receipt], now: datetime = None) -> List[Dict[str, Any]]:
    now = now or utcnow()
    rows = []
    for r in receipts:
        rows.append({
            "id": r.id,
            "merchant_name": r.merchant_name,
            "category": r.category or DEFAULT_CATEGORY,
            "date_of_purchase": r.date_of_purchase or now.isoformat(),
            "total_amount": r.total_expense or 0,
            "has_promotion": False,
            "items": parse_items(r.items),
            "image_url": r.image_url,
            "promotions": [],
        })
    return rows


def to_transaction_rows(receipts: List[Receipt]) -> List[Dict[str, Any]]:
    """Recent-transaction list on the expense tracker."""
    return [{
        "merchant": r.merchant_name,
        "category": r.category,
        "amount": r.total_expense,
        "date": r.date_of_purchase,
        "icon": category_icon(r.category),
    } for r in receipts]


class ReceiptFilter:
    def __init__(self, search_term="", category="all", date_range="all", has_promotion=False):
        self.search_term = search_term or ""
        self.category = category or "all"
        self.date_range = date_range or "all"
        self.has_promotion = has_promotion

    def _in_range(self, purchased: Optional[datetime], today: datetime) -> bool:
        if self.date_range == "all":
            return True
        if purchased is None:
            return False
        start_of_day = today.replace(hour=0, minute=0, second=0, microsecond=0)
        first_of_month = start_of_day.replace(day=1)
        if self.date_range == "this-week":
            # weeks start on Sunday
            days_since_sunday = (start_of_day.weekday() + 1) % 7
            return purchased >= start_of_day - timedelta(days=days_since_sunday)
        if self.date_range == "this-month":
            return purchased >= first_of_month
        if self.date_range == "last-month":
            first_of_last = (first_of_month - timedelta(days=1)).replace(day=1)
            return first_of_last <= purchased < first_of_month
        return True

    def matches(self, row: Dict[str, Any], today: datetime) -> bool:
        if self.search_term and self.search_term.lower() not in (row.get("merchant_name") or "").lower():
            return False
        if self.has_promotion and not row.get("has_promotion"):
            return False
        if self.category != "all" and category_id(row.get("category")) != self.category.lower():
            return False
        # window boundaries are local calendar days
        return self._in_range(to_local(parse_datetime(row.get("date_of_purchase"))), today)

    def apply(self, rows: List[Dict[str, Any]], today: datetime = None) -> List[Dict[str, Any]]:
        today = today or datetime.now()
        return [r for r in rows if self.matches(r, today)]


# ---------------- OCR ----------------
class OcrScanner:
    """Holds the selected receipt image and the OCR extraction for it."""

    def __init__(self, api):
        self.api = api
        self.reset()

    def reset(self):
        self.filename: Optional[str] = None
        self.file_data: Optional[bytes] = None
        self.image_preview: Optional[str] = None
        self.extracted_data: Optional[Dict[str, Any]] = None
        self.ocr_text = ""
        self.is_processing = False
        self.processing_message = ""
        self.show_full_text = False

    def toggle_full_text(self):
        self.show_full_text = not self.show_full_text

    def select_file(self, filename: str, data: bytes) -> None:
        validate_receipt_file(filename, len(data))
        self.filename = filename
        self.file_data = data
        self.image_preview = to_data_url(data, filename)
        self.ocr_text = ""
        self.extracted_data = None

    def _handle_result(self, response) -> Dict[str, Any]:
        if not is_complete_extraction(response):
            self.ocr_text = OCR_ERROR_MESSAGE
            raise OcrError("Could not extract receipt details. Please try again.")
        self.extracted_data = response
        self.ocr_text = response.get("fullText") or NO_TEXT_MESSAGE
        return response

    def scan(self) -> Dict[str, Any]:
        if not self.file_data:
            raise OcrError("No file selected!")
        self.is_processing = True
        self.processing_message = "Processing your receipt..."
        try:
            response = self.api.post("/ocr/scan", files={"file": (self.filename, self.file_data)})
        except ApiError as e:
            logger.error(f"OCR scan failed for {self.filename}: {e}")
            self.processing_message = ""
            self.ocr_text = OCR_ERROR_MESSAGE
            raise OcrError("Error processing receipt. Please try again.") from e
        finally:
            self.is_processing = False
        return self._handle_result(response)

    def scan_base64(self, image: str) -> Dict[str, Any]:
        if not image:
            raise OcrError("No image data provided!")
        self.is_processing = True
        self.processing_message = "Processing your receipt..."
        self.image_preview = image if image.startswith("data:") else f"data:image/jpeg;base64,{image}"
        try:
            response = self.api.post("/ocr/scan/base64", json={"base64Image": image})
        except ApiError as e:
            logger.error(f"Base64 OCR scan failed: {e}")
            self.processing_message = ""
            self.ocr_text = OCR_ERROR_MESSAGE
            raise OcrError("Error processing receipt. Please try again.") from e
        finally:
            self.is_processing = False
        return self._handle_result(response)


# ---------------- Service ----------------
class ReceiptService:
    def __init__(self, api):
        self.api = api

    def upload_receipt(self, files) -> Receipt:
        return Receipt.from_dict(self.api.post("/receipts", files=files) or {})

    def get_user_receipts(self, user_id) -> List[Receipt]:
        data = self.api.get(f"/receipts/user/{user_id}") or []
        return [Receipt.from_dict(standardize_receipt(r)) for r in data]

    def get_recent_receipts(self, user_id) -> List[Receipt]:
        try:
            data = self.api.get(f"/receipts/user/{user_id}/recent") or []
        except ApiError as e:
            logger.error(f"Error loading recent transactions: {e}")
            return []
        return [Receipt.from_dict(r) for r in data]

    def get_receipt_by_id(self, receipt_id) -> Receipt:
        return Receipt.from_dict(self.api.get(f"/receipts/{receipt_id}") or {})

    def get_receipt_promotions(self, receipt_id) -> List[Dict[str, Any]]:
        try:
            return self.api.get(f"/receipts/{receipt_id}/promotions") or []
        except ApiError as e:
            logger.error(f"Error fetching promotions for receipt {receipt_id}: {e}")
            return []

    def delete_receipt(self, receipt_id) -> None:
        self.api.delete(f"/receipts/{receipt_id}")
        logger.info(f"Receipt {receipt_id} deleted")

    def save_receipt(self, receipt_data: Dict[str, Any]) -> Tuple[Receipt, int]:
        response = self.api.post("/receipts", json=standardize_receipt(receipt_data)) or {}
        receipt = Receipt.from_dict(standardize_receipt(response.get("receipt") or {}))
        points = int(response.get("pointsAwarded") or 0)
        logger.info(f"Receipt {receipt.id} saved, {points} points awarded")
        return receipt, points
