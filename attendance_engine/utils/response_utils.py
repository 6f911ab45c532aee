"""
Response utility functions for standardized API responses.
"""
from typing import Tuple, Dict, Any, Optional

def success_response(message: str = "Success", data: Any = None, status_code: int = 200) -> Tuple[Dict[str, Any], int]:
    """
    Standard Success Response.
    """
    response = {
        "success": True,
        "message": message,
        "data": data if data is not None else {}
    }
    return response, status_code

def error_response(message: str, status_code: int = 500, error_details: Any = None,
                   code: Optional[str] = None) -> Tuple[Dict[str, Any], int]:
    """
    Standard Error Response.
    """
    response = {
        "success": False,
        "error": {
            "code": code or "ERROR",
            "message": message
        }
    }
    if error_details:
        response["error"]["details"] = error_details if isinstance(error_details, (dict, list)) else str(error_details)

    return response, status_code
