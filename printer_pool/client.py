"""
Printer Pool Client
===================

Python SDK for interacting with the Printer Pool Service.

Usage:
    from printer_pool.client import PrintPoolClient

    client = PrintPoolClient('http://localhost:5100', api_key='your-key')

    # Register a printer
    client.add_printer('Kitchen', 'ethernet', ip='192.168.1.50')

    # Print raw ESC/POS bytes on any available printer
    result = client.print_raw(b'\\x1b@Hello\\n')

    # Print an image scaled to the chosen printer
    with open('receipt.png', 'rb') as f:
        result = client.print_image(f.read())
"""

import base64
import requests
from typing import Dict, Any, Optional, List


class PrintPoolClient:
    """Client for the Printer Pool Service."""

    def __init__(self, base_url: str = 'http://localhost:5100', api_key: str = None):
        """
        Initialize client.

        Args:
            base_url: Base URL of the print service
            api_key: API key for authentication
        """
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key

    def _headers(self) -> Dict[str, str]:
        """Get request headers."""
        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['Authorization'] = f'Bearer {self.api_key}'
        return headers

    def _request(self, method: str, endpoint: str, data: Dict = None,
                 params: Dict = None) -> Dict[str, Any]:
        """Make API request."""
        url = f'{self.base_url}{endpoint}'

        try:
            if method == 'GET':
                response = requests.get(url, headers=self._headers(), params=params, timeout=30)
            elif method == 'POST':
                response = requests.post(url, json=data or {}, headers=self._headers(), timeout=90)
            elif method == 'PUT':
                response = requests.put(url, json=data or {}, headers=self._headers(), timeout=30)
            elif method == 'DELETE':
                response = requests.delete(url, headers=self._headers(), timeout=30)
            else:
                raise ValueError(f'Unknown method: {method}')

            return response.json()

        except requests.exceptions.Timeout:
            return {'success': False, 'error': 'Request timeout'}
        except requests.exceptions.ConnectionError:
            return {'success': False, 'error': f'Cannot connect to {self.base_url}'}
        except ValueError as e:
            return {'success': False, 'error': f'Invalid response: {e}'}

    # =========================================================================
    # Health
    # =========================================================================

    def health(self) -> Dict[str, Any]:
        """Check service health."""
        return self._request('GET', '/health')

    def is_online(self) -> bool:
        """Check if service is online."""
        result = self.health()
        return result.get('status') == 'online'

    # =========================================================================
    # Printers
    # =========================================================================

    def list_printers(self) -> List[Dict[str, Any]]:
        """List all printers."""
        result = self._request('GET', '/api/printers')
        return result.get('printers', [])

    def get_printer(self, printer_id: str) -> Optional[Dict[str, Any]]:
        """Get printer by ID."""
        result = self._request('GET', f'/api/printers/{printer_id}')
        return result.get('printer') if result.get('success') else None

    def add_printer(self, name: str, printer_type: str, **kwargs) -> Dict[str, Any]:
        """
        Add a new printer.

        Args:
            name: Printer display name
            printer_type: ethernet, usb or bluetooth
            **kwargs: id, ip, port, vendor_id, product_id, mac_address,
                enabled, print_width
        """
        data = {
            'name': name,
            'type': printer_type,
            **kwargs
        }
        return self._request('POST', '/api/printers', data)

    def update_printer(self, printer_id: str, **kwargs) -> Dict[str, Any]:
        """Update printer configuration."""
        return self._request('PUT', f'/api/printers/{printer_id}', kwargs)

    def delete_printer(self, printer_id: str) -> Dict[str, Any]:
        """Delete a printer."""
        return self._request('DELETE', f'/api/printers/{printer_id}')

    def set_enabled(self, printer_id: str, enabled: bool) -> Dict[str, Any]:
        """Enable or disable a printer."""
        return self._request('POST', f'/api/printers/{printer_id}/enabled', {'enabled': enabled})

    def test_printer(self, printer_id: str) -> Dict[str, Any]:
        """Test printer connection (brings an offline printer back)."""
        return self._request('POST', f'/api/printers/{printer_id}/test')

    # =========================================================================
    # Printing
    # =========================================================================

    def print_raw(self, payload: bytes, target_printer_id: str = None,
                  max_attempts: int = None) -> Dict[str, Any]:
        """
        Print raw printer bytes.

        Args:
            payload: ESC/POS bytes
            target_printer_id: Pin to one printer (default: any available)
            max_attempts: Attempts across printers
        """
        data = {'payload_base64': base64.b64encode(payload).decode('ascii')}
        if target_printer_id:
            data['target_printer_id'] = target_printer_id
        if max_attempts is not None:
            data['max_attempts'] = max_attempts
        return self._request('POST', '/api/print', data)

    def print_image(self, image_data: bytes, target_printer_id: str = None,
                    max_attempts: int = None, cut: bool = True) -> Dict[str, Any]:
        """Print a PNG/JPEG image, scaled to the selected printer's width."""
        data = {
            'image_base64': base64.b64encode(image_data).decode('ascii'),
            'cut': cut,
        }
        if target_printer_id:
            data['target_printer_id'] = target_printer_id
        if max_attempts is not None:
            data['max_attempts'] = max_attempts
        return self._request('POST', '/api/print', data)

    def print_file(self, file_path: str, **options) -> Dict[str, Any]:
        """Print an image file."""
        with open(file_path, 'rb') as f:
            return self.print_image(f.read(), **options)

    def print_to_all(self, payload: bytes) -> Dict[str, Any]:
        """Print raw bytes on every enabled printer."""
        data = {'payload_base64': base64.b64encode(payload).decode('ascii')}
        return self._request('POST', '/api/print-all', data)

    def open_cash_drawer(self, printer_id: str = None) -> Dict[str, Any]:
        """Kick the cash drawer."""
        data = {'printer_id': printer_id} if printer_id else {}
        return self._request('POST', '/api/cash-drawer', data)

    # =========================================================================
    # Status & Jobs
    # =========================================================================

    def get_status(self) -> Dict[str, Any]:
        """
        Pool status summary.

        Returns:
            Dict with counts and printers list
            Example: {'total': 2, 'enabled': 2, 'by_status': {'idle': 1, 'offline': 1, ...}}
        """
        return self._request('GET', '/api/status')

    def list_jobs(self, printer_id: str = None, limit: int = 50) -> List[Dict[str, Any]]:
        """List recent print jobs."""
        params = {'limit': limit}
        if printer_id:
            params['printer_id'] = printer_id
        result = self._request('GET', '/api/jobs', params=params)
        return result.get('jobs', [])
