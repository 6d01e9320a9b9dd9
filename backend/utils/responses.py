from fastapi.responses import JSONResponse

from errors import ServiceError


def success_response(data=None, message="OK", status=200):
    return JSONResponse(
        status_code=status,
        content={
            "ok": True,
            "data": data if data is not None else {},
            "error": None,
            "message": message,
        }
    )


def error_response(error_code, status=400, message="An error occurred", data=None):
    return JSONResponse(
        status_code=status,
        content={
            "ok": False,
            "data": data or {},
            "error": error_code,
            "message": message,
        }
    )


def service_error_response(exc: ServiceError):
    return error_response(exc.code, status=exc.status_code, message=exc.message, data=exc.data)
