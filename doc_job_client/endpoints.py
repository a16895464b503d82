"""Knowledge about the remote operations that the client cannot read off a response."""

from doc_job_client.models import HEAVY_SCHEDULE, QUICK_SCHEDULE, RetrySchedule

API_PREFIX = "/api/v2/"

# Operations answering with a JSON document instead of a file
JSON_RESPONSE_OPERATIONS = frozenset(
    {
        "ProcessInvoice",
        "ProcessHealthCard",
        "ProcessContract",
        "ParseDocument",
        "ClassifyDocument",
        "CreateImages",
        "CreateImagesFromPdf",
    }
)

HEAVY_OPERATIONS = frozenset(
    {
        "ConvertOcrPdf",
        "ConvertPdfToWord",
        "ConvertPdfToExcel",
        "ConvertToPdf",
        "ConvertWordToPdfForm",
        "ImageExtractText",
        "ExtractTableFromPdf",
        "PdfA",
        "SplitPdfByBarcode",
        "SplitPdfBySwissQR",
        "GenerateDocumentMultiple",
    }
) | JSON_RESPONSE_OPERATIONS


def operation_name(endpoint_path: str) -> str:
    """``/api/v2/Merge?x=1`` -> ``Merge``"""
    path = endpoint_path.split("?", 1)[0].rstrip("/")
    return path.rsplit("/", 1)[-1]


def expects_json(endpoint_path: str) -> bool:
    return operation_name(endpoint_path) in JSON_RESPONSE_OPERATIONS


def schedule_for(endpoint_path: str) -> RetrySchedule:
    if operation_name(endpoint_path) in HEAVY_OPERATIONS:
        return HEAVY_SCHEDULE
    return QUICK_SCHEDULE
