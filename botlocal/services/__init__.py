from botlocal.services.result import Result

__all__ = ["Result"]
