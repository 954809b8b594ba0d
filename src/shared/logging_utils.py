"""
Colored logging utilities for the account portal.

This module provides colored console logging with component identification,
timestamps, and message formatting so that every call the portal makes to the
authorization API, and every step of the authorize flow, is easy to follow.
"""

import logging
from datetime import datetime
from typing import Dict, Any, Optional
from enum import Enum

from colorama import Fore, Style, init

init(autoreset=True)  # Windows console support


class ComponentType(str, Enum):
    """Portal system component types."""
    PORTAL = "PORTAL"
    AUTH_API = "AUTH-API"
    BROWSER = "BROWSER"
    SYSTEM = "SYSTEM"


class MessageType(str, Enum):
    """Portal message types for logging."""
    REQUEST = "REQUEST"
    RESPONSE = "RESPONSE"
    ERROR = "ERROR"
    INFO = "INFO"
    API_CALL = "API-CALL"
    SESSION = "SESSION"
    FLOW_TRANSITION = "FLOW-TRANSITION"
    REDIRECT = "REDIRECT"


class PortalLogger:
    """
    Colored logger for portal message flows.

    Provides logging with color coding, timestamps, and structured
    message formatting to help trace page requests and backend calls.
    """

    def __init__(self, component_name: str):
        """
        Initialize portal logger for a specific component.

        Args:
            component_name: Name of the component (PORTAL, AUTH-API, etc.)
        """
        self.component_name = component_name.upper()
        self.colors = self._get_component_colors()

        self.logger = logging.getLogger(f"portal.{component_name.lower()}")
        self.logger.setLevel(logging.INFO)

        # Remove existing handlers to avoid duplicates
        self.logger.handlers.clear()

        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        self.logger.addHandler(handler)
        self.logger.propagate = False

    def _get_component_colors(self) -> Dict[str, str]:
        """Get color scheme for different components and message types."""
        return {
            'PORTAL': Fore.BLUE + Style.BRIGHT,
            'AUTH-API': Fore.GREEN + Style.BRIGHT,
            'BROWSER': Fore.YELLOW + Style.BRIGHT,
            'SYSTEM': Fore.MAGENTA + Style.BRIGHT,
            'ERROR': Fore.RED + Style.BRIGHT,
            'SUCCESS': Fore.GREEN + Style.BRIGHT,
            'INFO': Fore.CYAN,
            'DEBUG': Fore.WHITE + Style.DIM,
            'HEADER': Fore.WHITE + Style.BRIGHT,
            'SEPARATOR': Fore.WHITE + Style.DIM,
            'RESET': Style.RESET_ALL
        }

    def _format_timestamp(self) -> str:
        """Format current timestamp for log messages."""
        return datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]

    def _sanitize_data(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Sanitize sensitive data for logging.

        Redacts passwords, secrets and API keys, and truncates tokens and
        one-time codes.
        """
        sanitized = {}
        for key, value in data.items():
            key_lower = key.lower()

            if any(sensitive in key_lower for sensitive in ['password', 'secret', 'key']):
                sanitized[key] = '[REDACTED]'
            elif any(token in key_lower for token in ['token', 'otp', 'code']):
                if isinstance(value, str) and len(value) > 10:
                    sanitized[key] = f"{value[:10]}..."
                elif isinstance(value, str) and key_lower == 'otp':
                    sanitized[key] = '******'
                else:
                    sanitized[key] = value
            else:
                sanitized[key] = value

        return sanitized

    def log_portal_message(self,
                           source: str,
                           destination: str,
                           message_type: str,
                           data: Dict[str, Any],
                           success: bool = True):
        """
        Log a portal message with color coding and formatting.

        Args:
            source: Source component name
            destination: Destination component name
            message_type: Type of message (REQUEST, RESPONSE, etc.)
            data: Message data dictionary
            success: Whether the operation was successful
        """
        timestamp = self._format_timestamp()
        source_color = self.colors.get(source.upper(), self.colors['INFO'])
        dest_color = self.colors.get(destination.upper(), self.colors['INFO'])

        if not success:
            msg_color = self.colors['ERROR']
        elif message_type in ['RESPONSE', 'SUCCESS']:
            msg_color = self.colors['SUCCESS']
        else:
            msg_color = self.colors['INFO']

        header = f"{self.colors['HEADER']}[{timestamp}] {source_color}{source}{self.colors['RESET']} → {dest_color}{destination}{self.colors['RESET']}"
        print(header)

        print(f"{msg_color}{message_type}:{self.colors['RESET']}")

        sanitized_data = self._sanitize_data(data)
        for key, value in sanitized_data.items():
            print(f"  {self.colors['INFO']}{key}:{self.colors['RESET']} {value}")

        print(f"{self.colors['SEPARATOR']}{'-' * 60}{self.colors['RESET']}")
        print()

    def log_api_call(self,
                     method: str,
                     endpoint: str,
                     status_code: int,
                     duration_ms: float,
                     details: Optional[Dict[str, Any]] = None):
        """
        Log one call to the authorization API.

        A status code of 0 means the request never got a response.
        """
        call_data = {
            "method": method,
            "endpoint": endpoint,
            "status_code": status_code,
            "duration_ms": round(duration_ms, 1)
        }
        if details:
            call_data.update(details)

        self.log_portal_message(
            source=self.component_name,
            destination=ComponentType.AUTH_API.value,
            message_type=MessageType.API_CALL.value,
            data=call_data,
            success=200 <= status_code < 400
        )

    def log_flow_transition(self,
                            flow: str,
                            from_state: str,
                            to_state: str,
                            details: Optional[Dict[str, Any]] = None):
        """
        Log a state machine transition.

        Args:
            flow: Flow name (e.g. "authorize")
            from_state: State being left
            to_state: State being entered
            details: Additional context
        """
        transition = {"flow": flow, "from": from_state, "to": to_state}
        if details:
            transition.update(details)

        self.log_portal_message(
            source=self.component_name,
            destination=self.component_name,
            message_type=MessageType.FLOW_TRANSITION.value,
            data=transition,
            success=to_state != "error"
        )

    def log_session_event(self, event: str, details: Optional[Dict[str, Any]] = None):
        """Log token storage events (resolve, write-back, clear)."""
        session_data = {"event": event}
        if details:
            session_data.update(details)

        self.log_portal_message(
            source=self.component_name,
            destination=ComponentType.BROWSER.value,
            message_type=MessageType.SESSION.value,
            data=session_data
        )

    def log_http_request(self,
                         method: str,
                         path: str,
                         params: Optional[Dict[str, Any]] = None,
                         headers: Optional[Dict[str, str]] = None):
        """
        Log incoming page request details.

        Args:
            method: HTTP method
            path: Request path
            params: Query parameters or form data
            headers: Request headers (sensitive headers will be redacted)
        """
        request_data = {
            "method": method,
            "path": path
        }

        if params:
            request_data["parameters"] = params

        if headers:
            safe_headers = {}
            for key, value in headers.items():
                if key.lower() in ['authorization', 'cookie', 'x-api-key']:
                    safe_headers[key] = '[REDACTED]'
                else:
                    safe_headers[key] = value
            request_data["headers"] = safe_headers

        self.log_portal_message(
            source=ComponentType.BROWSER.value,
            destination=self.component_name,
            message_type="HTTP-REQUEST",
            data=request_data
        )

    def log_error(self,
                  error_type: str,
                  message: str,
                  details: Optional[Dict[str, Any]] = None):
        """
        Log error messages with context.

        Args:
            error_type: Type of error
            message: Error message
            details: Additional error context
        """
        error_data = {
            "error_type": error_type,
            "message": message
        }

        if details:
            error_data.update(details)

        self.log_portal_message(
            source=self.component_name,
            destination="ERROR-HANDLER",
            message_type=MessageType.ERROR.value,
            data=error_data,
            success=False
        )

    def log_info(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Log informational messages.

        Args:
            message: Info message
            details: Additional context
        """
        print(f"{self.colors['INFO']}[{self._format_timestamp()}] {self.component_name}: {message}{self.colors['RESET']}")
        if details:
            for key, value in self._sanitize_data(details).items():
                print(f"  {key}: {value}")
        print()

    def log_startup(self, port: int, additional_info: Optional[Dict[str, Any]] = None):
        """
        Log component startup information.

        Args:
            port: Port number the component is running on
            additional_info: Additional startup information
        """
        print(f"{self.colors['SUCCESS']}🚀 {self.component_name} started on port {port}{self.colors['RESET']}")
        if additional_info:
            for key, value in additional_info.items():
                print(f"   {key}: {value}")
        print(f"{self.colors['SEPARATOR']}{'-' * 60}{self.colors['RESET']}")
        print()
