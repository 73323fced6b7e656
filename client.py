"""
Python client for the SageExcel API.

Wraps the ``/api/auth`` routes with ``requests`` and runs the chart pipeline
locally: raw file bytes are fetched from the API, decoded here and turned
into chart inputs from a ``ChartSettings`` recipe.

    client = SageClient("http://localhost:8000")
    client.login("a@x.com", "secret")
    file_id = client.upload("sales.xlsx")["fileId"]
    chart = client.preview_chart(file_id, "bar", ChartSettings(x="Region", y="Revenue"))
"""
import mimetypes
import os
from typing import Any, Dict, List, Optional, Sequence, Union

import requests

from charts import ChartSettings, build_chart
from insights import summary_lines
from spreadsheet import decode_rows

API_PREFIX = "/api/auth"


class ApiError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


class SageClient:
    def __init__(self, base_url: str = "http://localhost:8000", session=None, token: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.token = token
        self.name = None
        self.is_admin = False

    # ----------------------
    # Transport
    # ----------------------
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def _request(self, method: str, path: str, **kwargs):
        url = f"{self.base_url}{API_PREFIX}{path}"
        resp = self.session.request(method, url, headers=self._headers(), **kwargs)
        if resp.status_code >= 400:
            try:
                message = resp.json().get("detail", resp.text)
            except ValueError:
                message = resp.text
            raise ApiError(resp.status_code, str(message))
        return resp

    def _json(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        return self._request(method, path, **kwargs).json()

    # ----------------------
    # Auth
    # ----------------------
    def register(self, name: str, email: str, password: str) -> Dict[str, Any]:
        return self._json("POST", "/register", json={"name": name, "email": email, "password": password})

    def login(self, email: str, password: str) -> Dict[str, Any]:
        data = self._json("POST", "/login", json={"email": email, "password": password})
        self.token = data["token"]
        self.name = data.get("name")
        self.is_admin = bool(data.get("isAdmin"))
        return data

    def logout(self) -> None:
        self.token = None
        self.name = None
        self.is_admin = False

    def change_password(self, old_password: str, new_password: str) -> Dict[str, Any]:
        """Change the password and drop the held token; log in again afterwards."""
        data = self._json("PUT", "/changePassword", json={"oldPassword": old_password, "newPassword": new_password})
        self.logout()
        return data

    def current_user(self) -> Dict[str, Any]:
        return self._json("GET", "/getUser")["user"]

    # ----------------------
    # Files
    # ----------------------
    def upload(self, source: Union[str, bytes], filename: Optional[str] = None, content_type: Optional[str] = None) -> Dict[str, Any]:
        """Upload a spreadsheet from a path or raw bytes."""
        if isinstance(source, (bytes, bytearray)):
            content = bytes(source)
            filename = filename or "upload.xlsx"
        else:
            with open(source, "rb") as f:
                content = f.read()
            filename = filename or os.path.basename(source)
        content_type = content_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"
        return self._json("POST", "/upload", files={"file": (filename, content, content_type)})

    def list_files(self) -> List[Dict[str, Any]]:
        return self._json("GET", "/getFiles")["files"]

    def fetch_file(self, file_id: str) -> bytes:
        return self._request("GET", f"/preview/{file_id}").content

    def download(self, file_id: str, path: str) -> str:
        with open(path, "wb") as f:
            f.write(self._request("GET", f"/download/{file_id}").content)
        return path

    def delete_file(self, file_id: str) -> Dict[str, Any]:
        return self._json("DELETE", f"/delete/{file_id}")

    def rows(self, file_id: str) -> List[Dict[str, Any]]:
        """Fetch a stored file and decode it into row dicts."""
        resp = self._request("GET", f"/preview/{file_id}")
        return decode_rows(resp.content, content_type=resp.headers.get("content-type"))

    # ----------------------
    # Analyses
    # ----------------------
    def save_analysis(self, file_id: str, chart_type: str, settings: ChartSettings,
                      summary: Union[str, Sequence[str], None] = None) -> Dict[str, Any]:
        payload = {
            "chartTitle": settings.title,
            "chartType": chart_type,
            "selectedFields": settings.selected_fields(),
            "chartOptions": settings.chart_options(),
            "fileId": file_id,
            "summary": summary_lines(summary),
        }
        return self._json("POST", "/saveAnalysis", json=payload)["analysis"]

    def list_analyses(self) -> List[Dict[str, Any]]:
        return self._json("GET", "/getAnalysis")["analysis"]

    def get_analysis(self, analysis_id: str) -> Dict[str, Any]:
        return self._json("GET", f"/analysis/{analysis_id}")

    def delete_analysis(self, analysis_id: str) -> Dict[str, Any]:
        return self._json("DELETE", f"/analysis/{analysis_id}")

    def request_summary(self, chart_title: str, chart_type: str, headers: Sequence[str],
                        data: Sequence[Dict[str, Any]]) -> List[str]:
        payload = {"chartTitle": chart_title, "chartType": chart_type, "headers": list(headers), "data": list(data)}
        return self._json("POST", "/summary", json=payload)["summary"]

    def dashboard(self) -> Dict[str, Any]:
        return self._json("GET", "/getData")

    def list_users(self) -> List[Dict[str, Any]]:
        return self._json("GET", "/getAllUsers")["users"]

    # ----------------------
    # Charts
    # ----------------------
    def preview_chart(self, file_id: str, chart_type: str, settings: ChartSettings) -> Dict[str, Any]:
        return build_chart(chart_type, self.rows(file_id), settings)

    def view_analysis(self, analysis_id: str) -> Dict[str, Any]:
        """Re-derive a saved chart from its recipe and the source file.

        A source file deleted since the analysis was saved raises ``ApiError``
        with status 404.
        """
        analysis = self.get_analysis(analysis_id)
        settings = ChartSettings.from_saved(analysis.get("selectedFields"), analysis.get("chartOptions"))
        chart = build_chart(analysis["chartType"], self.rows(analysis["fileId"]), settings)
        chart["title"] = analysis.get("chartTitle") or settings.title
        chart["summary"] = summary_lines(analysis.get("summary"))
        return chart
