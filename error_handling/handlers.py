"""Error handling and user feedback for the upload API."""

import datetime
import json
import logging
import re
import traceback
import uuid
from typing import Dict, Optional, Any, Callable
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from models.errors import (
    ErrorSeverity, ErrorCategory, ErrorContext, ErrorResult,
    FileSizeError, FileValidationError, StorageError, QuarantineError, ConfigurationError
)


class ErrorContextCapture:
    """Captures contextual information for error tracking and debugging."""

    async def capture_request_context(
        self,
        request: Optional[Request] = None,
        additional_data: Optional[Dict[str, Any]] = None
    ) -> ErrorContext:
        """
        Capture context from a FastAPI request.

        Args:
            request: FastAPI Request object
            additional_data: Additional context data

        Returns:
            ErrorContext: Captured context information
        """
        error_id = uuid.uuid4().hex
        timestamp = datetime.datetime.now()
        request_data = dict(additional_data or {})

        if request is None:
            return ErrorContext(
                error_id=error_id,
                timestamp=timestamp,
                request_id=None,
                user_agent=None,
                endpoint=None,
                stack_trace=traceback.format_exc(),
                request_data=request_data
            )

        request_data.update({
            "method": request.method,
            "client_host": request.client.host if request.client else None,
            "content_type": request.headers.get("content-type"),
        })

        return ErrorContext(
            error_id=error_id,
            timestamp=timestamp,
            request_id=request.headers.get("x-request-id"),
            user_agent=request.headers.get("user-agent"),
            endpoint=request.url.path,
            stack_trace=None,
            request_data=request_data
        )


class ErrorMessageTranslator:
    """Translates technical error messages to user-friendly messages with suggested actions."""

    def __init__(self):
        """Initialize the translator with predefined message mappings."""
        # most specific types first
        self._translation_rules = {
            FileSizeError: {
                "user_message": "The file is empty or larger than the upload limit.",
                "suggested_actions": [
                    "Check that the file is not empty",
                    "Try compressing the file before uploading"
                ],
                "severity": ErrorSeverity.MEDIUM,
                "category": ErrorCategory.VALIDATION
            },
            FileValidationError: {
                "user_message": "The file failed security validation.",
                "suggested_actions": [
                    "Check the list of supported file types",
                    "Try uploading a different file"
                ],
                "severity": ErrorSeverity.MEDIUM,
                "category": ErrorCategory.VALIDATION
            },
            QuarantineError: {
                "user_message": "The upload could not be processed safely.",
                "suggested_actions": [
                    "Do not retry this file",
                    "Report this error with the error ID"
                ],
                "severity": ErrorSeverity.CRITICAL,
                "category": ErrorCategory.STORAGE
            },
            StorageError: {
                "user_message": "The file could not be stored. Please try again.",
                "suggested_actions": [
                    "Try your upload again",
                    "Contact support if the problem persists"
                ],
                "severity": ErrorSeverity.HIGH,
                "category": ErrorCategory.STORAGE
            },
            ConfigurationError: {
                "user_message": "There's a configuration issue. Please contact support.",
                "suggested_actions": [
                    "Contact technical support",
                    "Report this error with the error ID"
                ],
                "severity": ErrorSeverity.CRITICAL,
                "category": ErrorCategory.CONFIGURATION
            },
            Exception: {
                "user_message": "An unexpected error occurred. Please try again.",
                "suggested_actions": [
                    "Try your request again",
                    "Contact support with the error ID if needed"
                ],
                "severity": ErrorSeverity.MEDIUM,
                "category": ErrorCategory.SYSTEM
            }
        }

    def translate_error(
        self,
        exception: Exception,
        context: ErrorContext,
        fallback_message: Optional[str] = None
    ) -> ErrorResult:
        """
        Translate a technical error to a user-friendly error result.

        Args:
            exception: The exception to translate
            context: Error context information
            fallback_message: Optional fallback message if no rule matches

        Returns:
            ErrorResult: User-friendly error result
        """
        rule = self._get_translation_rule(exception)
        technical_message = self._sanitize_technical_message(str(exception))

        return ErrorResult(
            error_code=self._generate_error_code(exception),
            severity=rule.get("severity", ErrorSeverity.MEDIUM),
            category=rule.get("category", ErrorCategory.SYSTEM),
            technical_message=technical_message,
            user_message=rule.get("user_message", fallback_message or technical_message),
            suggested_actions=rule.get("suggested_actions", []),
            context=context,
            recoverable=self._is_recoverable(exception)
        )

    def _get_translation_rule(self, exception: Exception) -> Dict[str, Any]:
        """Get the most specific translation rule for an exception."""
        exception_type = type(exception)
        if exception_type in self._translation_rules:
            return self._translation_rules[exception_type]

        for rule_type, rule in self._translation_rules.items():
            if isinstance(exception, rule_type):
                return rule

        return self._translation_rules.get(Exception, {})

    def _generate_error_code(self, exception: Exception) -> str:
        """Use the exception's own error code when it carries one."""
        error_code = getattr(exception, "error_code", None)
        if error_code:
            return error_code
        timestamp = int(datetime.datetime.now().timestamp())
        return f"{type(exception).__name__}_{timestamp}"

    def _is_recoverable(self, exception: Exception) -> bool:
        """Storage failures other than quarantine can be retried."""
        return isinstance(exception, StorageError) and not isinstance(exception, QuarantineError)

    def _sanitize_technical_message(self, message: str) -> str:
        """
        Sanitize technical message before it reaches logs.

        Args:
            message: Raw technical message from exception

        Returns:
            str: Sanitized message safe for logging
        """
        max_length = 500

        # Long unbroken runs are usually file content echoed into an error
        long_string_pattern = re.compile(r'(?=.*[A-Za-z].*[A-Za-z].*[A-Za-z])\S{200,}')
        if long_string_pattern.search(message):
            message = long_string_pattern.sub('[LONG_CONTENT_TRUNCATED]', message)

        if len(message) > max_length:
            message = message[:max_length] + "... [TRUNCATED]"

        return message


class ErrorHandler:
    """Main error handler that orchestrates error processing."""

    def __init__(self):
        self.context_capture = ErrorContextCapture()
        self.message_translator = ErrorMessageTranslator()

    async def handle_error(
        self,
        exception: Exception,
        request: Optional[Request] = None,
        additional_context: Optional[Dict[str, Any]] = None
    ) -> ErrorResult:
        """
        Error handling pipeline: capture context, translate, log.

        Args:
            exception: The exception to handle
            request: FastAPI request object
            additional_context: Additional context data

        Returns:
            ErrorResult: Complete error handling result
        """
        try:
            context = await self.context_capture.capture_request_context(request, additional_context)
            error_result = self.message_translator.translate_error(exception, context)
            self._log_error(error_result)
            return error_result

        except Exception as handler_error:
            logging.error(f"Error handler failed: {handler_error}")
            return self._create_fallback_error_result(exception)

    def _log_error(self, error_result: ErrorResult) -> None:
        """Log error with appropriate level based on severity."""
        log_data = {
            "error_id": error_result.context.error_id,
            "error_code": error_result.error_code,
            "category": error_result.category.value,
            "severity": error_result.severity.value,
            "endpoint": error_result.context.endpoint,
            "technical_message": error_result.technical_message
        }

        if error_result.severity == ErrorSeverity.CRITICAL:
            logging.critical(f"Critical error: {json.dumps(log_data)}")
        elif error_result.severity == ErrorSeverity.HIGH:
            logging.error(f"High severity error: {json.dumps(log_data)}")
        elif error_result.severity == ErrorSeverity.MEDIUM:
            logging.warning(f"Medium severity error: {json.dumps(log_data)}")
        else:
            logging.info(f"Low severity error: {json.dumps(log_data)}")

    def _create_fallback_error_result(self, exception: Exception) -> ErrorResult:
        """Create a minimal error result when error handling fails."""
        error_id = uuid.uuid4().hex

        context = ErrorContext(
            error_id=error_id,
            timestamp=datetime.datetime.now(),
            request_id=None,
            user_agent=None,
            endpoint=None,
            stack_trace=traceback.format_exc(),
            request_data={}
        )

        return ErrorResult(
            error_code=f"FALLBACK_{error_id}",
            severity=ErrorSeverity.CRITICAL,
            category=ErrorCategory.SYSTEM,
            technical_message=self.message_translator._sanitize_technical_message(str(exception)),
            user_message="A system error occurred. Please try again or contact support.",
            suggested_actions=["Try again", "Contact support"],
            context=context,
            recoverable=False
        )


def get_status_code(error_result: ErrorResult) -> int:
    """Map an error result to an HTTP status code."""
    category_status_map = {
        ErrorCategory.VALIDATION: 400,
        ErrorCategory.STORAGE: 500,
        ErrorCategory.CONFIGURATION: 500,
        ErrorCategory.SYSTEM: 500
    }
    return category_status_map.get(error_result.category, 500)


def build_error_payload(error_result: ErrorResult) -> Dict[str, Any]:
    return {
        "success": False,
        "error": error_result.user_message,
        "error_id": error_result.context.error_id,
        "error_code": error_result.error_code,
        "suggested_actions": error_result.suggested_actions,
        "severity": error_result.severity.value,
        "category": error_result.category.value,
        "recoverable": error_result.recoverable
    }


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """FastAPI middleware for centralized error handling."""

    def __init__(self, app, error_handler: ErrorHandler):
        super().__init__(app)
        self.error_handler = error_handler

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """
        Process requests and handle any errors that occur.

        Args:
            request: FastAPI request
            call_next: Next middleware or endpoint

        Returns:
            Response: HTTP response
        """
        try:
            response = await call_next(request)
            return response
        except Exception as e:
            error_result = await self.error_handler.handle_error(e, request)
            return JSONResponse(status_code=get_status_code(error_result), content=build_error_payload(error_result))


class ErrorResponseHandler:
    """Builds JSON error responses for failures caught inside endpoints."""

    def __init__(self, error_handler: ErrorHandler):
        self.error_handler = error_handler

    async def handle_json_error(
        self,
        exception: Exception,
        request: Optional[Request] = None,
        additional_context: Optional[Dict[str, Any]] = None
    ) -> JSONResponse:
        """Handle error with JSON response."""
        error_result = await self.error_handler.handle_error(exception, request, additional_context)
        return JSONResponse(status_code=get_status_code(error_result), content=build_error_payload(error_result))
