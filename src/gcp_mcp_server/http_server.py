import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode, urlparse, urlunparse, parse_qsl

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from . import __version__
from .errors import UnknownToolError
from .registry import registry

logger = logging.getLogger(__name__)

DEFAULT_PROTOCOL_VERSION = "2025-03-26"
SERVER_DESCRIPTION = "GCP MCP Server with comprehensive platform control and enhanced BigQuery capabilities"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

bearer_scheme = HTTPBearer(auto_error=False)


class HealthResponse(BaseModel):
    status: str = Field(default="healthy")
    server: str = Field(default="gcp-mcp")
    version: str = Field(default=__version__)


class RegisterRequest(BaseModel):
    redirect_uris: Optional[List[str]] = None

    model_config = {"extra": "allow"}


class JSONRPCError(Exception):
    def __init__(self, code: int, message: str, data: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


def add_query_params(url: str, **params: str) -> str:
    parts = urlparse(url)
    query = parse_qsl(parts.query) + [(k, v) for k, v in params.items() if v]
    return urlunparse(parts._replace(query=urlencode(query)))


class MCPHTTPServer:
    """JSON-RPC over HTTP in front of a ``GCPMCPServer``."""

    def __init__(self, mcp_server, host: str = "0.0.0.0", port: int = 8080):
        self.mcp_server = mcp_server
        self.config = mcp_server.config
        self.host = host
        self.port = port
        self.app = FastAPI(
            title="GCP MCP Server",
            description="MCP (Model Context Protocol) server for BigQuery and Google Cloud.",
            version=__version__,
        )

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self.setup_routes()
        if self.config.use_oauth:
            self.setup_oauth_routes()

    async def authenticate(
        self,
        request: Request,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    ) -> bool:
        if credentials is None or credentials.credentials != self.config.mcp_secret:
            client = request.client.host if request.client else "unknown"
            logger.warning(f"Unauthorized access attempt from: {client}")
            raise HTTPException(status_code=401, detail="Unauthorized")
        return True

    def setup_routes(self) -> None:
        authenticate = self.authenticate

        @self.app.get("/health", response_model=HealthResponse, tags=["Health"])
        async def health_check() -> HealthResponse:
            return HealthResponse()

        @self.app.get("/mcp", tags=["MCP"])
        async def handshake(auth: bool = Depends(authenticate)):
            return {
                "name": "gcp-mcp",
                "transport": "http",
                "version": "1.0",
                "description": "GCP MCP Server with full platform control",
                "capabilities": {"tools": True},
            }

        @self.app.post("/mcp", tags=["MCP"])
        async def jsonrpc(request: Request, auth: bool = Depends(authenticate)):
            try:
                payload = await request.json()
            except (json.JSONDecodeError, UnicodeDecodeError):
                return JSONResponse(self.error_response(None, JSONRPCError(PARSE_ERROR, "Parse error")))
            if not isinstance(payload, dict):
                return JSONResponse(self.error_response(None, JSONRPCError(INVALID_REQUEST, "Invalid Request")))

            method = payload.get("method")
            request_id = payload.get("id")
            logger.info(f"MCP method: {method} (id={request_id})")

            if request_id is None and isinstance(method, str) and method.startswith("notifications/"):
                return Response(status_code=202)

            try:
                result = await self.dispatch(method, payload.get("params") or {})
            except JSONRPCError as error:
                return JSONResponse(self.error_response(request_id, error))
            except Exception as error:
                logger.error(f"Error processing {method}: {error}")
                return JSONResponse(self.error_response(
                    request_id, JSONRPCError(INTERNAL_ERROR, "Internal error", str(error))
                ))
            return JSONResponse({"jsonrpc": "2.0", "id": request_id, "result": result})

    def setup_oauth_routes(self) -> None:
        @self.app.get("/.well-known/oauth-authorization-server", tags=["OAuth"])
        async def oauth_metadata(request: Request):
            protocol = request.headers.get("x-forwarded-proto", "https")
            base = f"{protocol}://{request.headers.get('host', request.url.netloc)}"
            return {
                "issuer": base,
                "authorization_endpoint": f"{base}/authorize",
                "token_endpoint": f"{base}/token",
                "registration_endpoint": f"{base}/register",
                "response_types_supported": ["code"],
                "grant_types_supported": ["authorization_code"],
                "code_challenge_methods_supported": ["S256"],
            }

        @self.app.post("/register", status_code=201, tags=["OAuth"])
        async def register(body: RegisterRequest):
            return {
                "client_id": "mcp-client",
                "client_secret": "not-used",
                "redirect_uris": body.redirect_uris or ["http://localhost"],
            }

        @self.app.get("/authorize", tags=["OAuth"])
        async def authorize(redirect_uri: Optional[str] = None, state: Optional[str] = None):
            if not redirect_uri:
                raise HTTPException(status_code=400, detail="Missing redirect_uri")
            return RedirectResponse(add_query_params(redirect_uri, code="dummy-code", state=state))

        @self.app.post("/token", tags=["OAuth"])
        async def token():
            return {"access_token": "dummy-token", "token_type": "Bearer", "expires_in": 3600}

    async def dispatch(self, method: Optional[str], params: Dict[str, Any]) -> Dict[str, Any]:
        if method == "initialize":
            return {
                "protocolVersion": params.get("protocolVersion") or DEFAULT_PROTOCOL_VERSION,
                "capabilities": {"tools": {}, "resources": {}, "prompts": {}},
                "serverInfo": {"name": "gcp-mcp", "version": __version__, "description": SERVER_DESCRIPTION},
            }
        if method == "ping":
            return {}
        if method == "tools/list":
            return {"tools": registry.describe()}
        if method == "tools/call":
            name = params.get("name")
            if not name:
                raise JSONRPCError(INVALID_PARAMS, "Missing tool name")
            try:
                return await self.mcp_server.call_tool(name, params.get("arguments"))
            except UnknownToolError as error:
                raise JSONRPCError(INVALID_PARAMS, str(error))
        if method == "resources/list":
            resources = await self.mcp_server.list_resources()
            return {"resources": [r.model_dump(mode="json", exclude_none=True) for r in resources]}
        if method == "resources/read":
            uri = params.get("uri")
            if not uri:
                raise JSONRPCError(INVALID_PARAMS, "Missing resource uri")
            try:
                text = await self.mcp_server.read_resource(uri)
            except ValueError as error:
                raise JSONRPCError(INVALID_PARAMS, str(error))
            return {"contents": [{"uri": uri, "mimeType": "application/json", "text": text}]}
        raise JSONRPCError(METHOD_NOT_FOUND, f"Method not found: {method}")

    @staticmethod
    def error_response(request_id: Any, error: JSONRPCError) -> Dict[str, Any]:
        return {"jsonrpc": "2.0", "id": request_id, "error": error.to_dict()}

    async def start(self) -> None:
        logger.info(f"Starting GCP MCP HTTP server on {self.host}:{self.port}")
        config = uvicorn.Config(
            app=self.app,
            host=self.host,
            port=self.port,
            log_level="debug" if self.config.debug else "info",
        )
        server = uvicorn.Server(config)
        await server.serve()
