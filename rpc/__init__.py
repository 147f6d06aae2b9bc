"""RPC module for interacting with the deposit wallet service.

The wallet service owns the HD wallet behind every bounty deposit address.
It derives the address for a given index deterministically and can report
funds received at a derived address, including confidential amounts the
public chain explorers cannot see.
"""
import requests
from typing import Any, Optional
from config import settings_conf

class RPCError(Exception):
    """Base exception for RPC errors"""
    def __init__(self, message: str, code: Optional[int] = None, method: Optional[str] = None):
        self.code = code
        self.method = method
        super().__init__(f"RPC Error [{code}] in {method}: {message}" if code else message)

class NodeConnectionError(RPCError):
    """Raised when connection to the wallet service fails"""
    pass

class NodeAuthError(RPCError):
    """Raised when authentication failed"""
    pass

class WalletError(RPCError):
    """Wallet-specific error codes and messages

    Common error codes:
    -1  - General error during processing
    -5  - Invalid parameter
    -8  - Index out of range
    -13 - Wallet locked
    -20 - Invalid address or key
    -32601 - Method not found
    """
    ERROR_MESSAGES = {
        -1: "General error during processing",
        -5: "Invalid parameter",
        -8: "Index out of range",
        -13: "Wallet locked",
        -20: "Invalid address or key",
        -32601: "Method not found",
    }

    def __init__(self, message: str, code: int, method: str):
        standard_msg = self.ERROR_MESSAGES.get(code, "Unknown error")
        full_msg = f"{standard_msg} - {message}" if message != standard_msg else message
        super().__init__(full_msg, code, method)

class RPCMethod:
    """Descriptor class for RPC methods"""
    def __init__(self, method_name: str):
        self.method_name = method_name

    def __get__(self, obj, objtype=None):
        if obj is None:
            return self

        def caller(*args) -> Any:
            return obj._call_method(self.method_name, *args)

        return caller

class WalletRPC:
    """Wallet derivation service JSON-RPC client"""

    def __init__(self, url: Optional[str] = None, user: Optional[str] = None,
                 password: Optional[str] = None, timeout: int = 30):
        """Initialize RPC client, falling back to settings.conf values"""
        self.url = url or settings_conf['wallet_rpc_url']
        self.timeout = timeout

        self.session = requests.Session()
        rpc_user = user if user is not None else settings_conf['wallet_rpc_user']
        rpc_password = password if password is not None else settings_conf['wallet_rpc_password']
        if rpc_user:
            self.session.auth = (rpc_user, rpc_password)
        self.session.headers['content-type'] = 'application/json'

        self._request_id = 0

    def _get_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    def _call_method(self, method: str, *args) -> Any:
        """Make RPC call to the wallet service

        Args:
            method: RPC method name
            *args: Method arguments

        Returns:
            The ``result`` member of the response

        Raises:
            NodeConnectionError: Connection to the service failed
            NodeAuthError: Authentication failed
            WalletError: The service returned a JSON-RPC error
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": list(args),
            "id": self._get_request_id()
        }

        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)

            if response.status_code == 401:
                raise NodeAuthError("Authentication failed - check wallet_rpc_user/wallet_rpc_password")

            # Error bodies carry the JSON-RPC error, parse before raise_for_status
            result = response.json()

            if result.get('error') is not None:
                error = result['error']
                raise WalletError(
                    error.get('message', 'Unknown error'),
                    error.get('code', -1),
                    method
                )

            response.raise_for_status()

            return result['result']

        except requests.exceptions.Timeout as e:
            raise NodeConnectionError(
                f"Request timed out after {self.timeout} seconds", method=method
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise NodeConnectionError(
                f"Failed to connect to wallet service at {self.url}", method=method
            ) from e
        except requests.exceptions.RequestException as e:
            raise NodeConnectionError(f"Request failed: {str(e)}", method=method) from e
        except (KeyError, ValueError) as e:
            raise NodeConnectionError(f"Invalid response format: {str(e)}", method=method) from e

    # Address derivation
    deriveaddress = RPCMethod('deriveaddress')
    checkaddress = RPCMethod('checkaddress')

    # Payment detection
    checkpayment = RPCMethod('checkpayment')

    # Utility
    ping = RPCMethod('ping')

# Create global instance
client = WalletRPC()

__all__ = [
    'RPCError',
    'NodeConnectionError',
    'NodeAuthError',
    'WalletError',
    'WalletRPC',
    'client'
]
