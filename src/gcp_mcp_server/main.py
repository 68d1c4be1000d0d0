#!/usr/bin/env python3
import argparse
import base64
import binascii
import json
import logging
import os
import re
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import urlparse

import anyio
from mcp import types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from . import __version__
from . import tools  # noqa: F401  registers every tool
from .clients import GCPClients
from .content import to_json
from .errors import GCPToolError
from .registry import ToolContext, registry

logger = logging.getLogger(__name__)

SERVER_NAME = "gcp-mcp"
DEFAULT_SECRET = "change-this-secret-token"
SCHEMA_PATH = "schema"


def env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() == "true"


def setup_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


class ServerConfig:
    """Configuration class for the GCP MCP server."""

    def __init__(
        self,
        project_id: Optional[str] = None,
        location: str = "US",
        key_filename: Optional[str] = None,
        credentials_json: Optional[str] = None,
        mcp_secret: str = DEFAULT_SECRET,
        use_oauth: bool = False,
        debug: bool = False,
        use_http: bool = False,
        http_host: str = "0.0.0.0",
        http_port: int = 8080,
    ):
        self.project_id = project_id
        self.location = location
        self.key_filename = key_filename
        self.credentials_json = credentials_json
        self.mcp_secret = mcp_secret
        self.use_oauth = use_oauth
        self.debug = debug
        self.use_http = use_http
        self.http_host = http_host
        self.http_port = http_port


def _check_service_account(key_data: Any, what: str) -> None:
    if (not isinstance(key_data, dict) or
            key_data.get('type') != 'service_account' or
            not key_data.get('project_id')):
        raise ValueError(f'Invalid service account {what} format')


async def validate_config(config: ServerConfig) -> None:
    """Validate the server configuration."""

    if config.key_filename:
        key_path = Path(config.key_filename).resolve()
        try:
            if not key_path.exists():
                raise FileNotFoundError(f"Key file not found: {key_path}")
            if not key_path.is_file():
                raise ValueError(f"Key file path is not a file: {key_path}")
            if not os.access(key_path, os.R_OK):
                raise PermissionError(f"Permission denied accessing key file: {key_path}")

            config.key_filename = str(key_path)

            try:
                key_data = json.loads(key_path.read_text())
            except json.JSONDecodeError:
                raise ValueError('Service account key file is not valid JSON')
            _check_service_account(key_data, 'key file')

        except (OSError, ValueError) as error:
            logger.error(f'File access error: {error}')
            raise

    elif config.credentials_json:
        try:
            key_data = json.loads(config.credentials_json)
        except json.JSONDecodeError:
            raise ValueError('Invalid JSON in GOOGLE_APPLICATION_CREDENTIALS_JSON environment variable')
        _check_service_account(key_data, 'credentials')

    if config.project_id and not re.match(r'^[a-z0-9-]+$', config.project_id):
        raise ValueError('Invalid project ID format')


def decode_credentials_json(raw: Optional[str]) -> Optional[str]:
    """Accept service account JSON either verbatim or base64 encoded."""
    if not raw:
        return None
    try:
        json.loads(raw)
        logger.info("Using JSON credentials from environment")
        return raw
    except json.JSONDecodeError:
        pass
    try:
        decoded = base64.b64decode(raw, validate=True).decode('utf-8')
        json.loads(decoded)
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as error:
        logger.error(f"Invalid GOOGLE_APPLICATION_CREDENTIALS_JSON: not valid JSON or base64 ({error})")
        return None
    logger.info("Decoded base64-encoded credentials from environment")
    return decoded


def parse_args(argv: Optional[Sequence[str]] = None) -> ServerConfig:
    """Parse command line arguments and environment variables."""
    parser = argparse.ArgumentParser(
        description="GCP MCP Server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --project-id my-project
  %(prog)s --project-id my-project --location EU --key-file /path/to/key.json
  %(prog)s --http --port 8080
        """
    )
    parser.add_argument('--project-id', help='Google Cloud Project ID (default: GOOGLE_CLOUD_PROJECT or GCP_PROJECT)')
    parser.add_argument('--location', default='US', help='BigQuery location/region (default: US)')
    parser.add_argument('--key-file', help='Path to service account key file')
    parser.add_argument('--http', action='store_true', help='Enable HTTP transport (instead of stdio)')
    parser.add_argument('--port', type=int, help='HTTP server port (default: PORT or 8080)')
    parser.add_argument('--host', default='0.0.0.0', help='HTTP server host (default: 0.0.0.0)')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging (also DEBUG_GCP_MCP=true)')

    args = parser.parse_args(argv)
    debug = args.debug or env_flag('DEBUG_GCP_MCP')
    setup_logging(debug)

    mcp_secret = os.getenv('MCP_SECRET')
    if not mcp_secret:
        logger.warning('MCP_SECRET is not set; using the default secret token')
        mcp_secret = DEFAULT_SECRET

    return ServerConfig(
        project_id=args.project_id or os.getenv('GOOGLE_CLOUD_PROJECT') or os.getenv('GCP_PROJECT'),
        location=args.location,
        key_filename=args.key_file,
        credentials_json=decode_credentials_json(os.getenv('GOOGLE_APPLICATION_CREDENTIALS_JSON')),
        mcp_secret=mcp_secret,
        use_oauth=env_flag('USE_OAUTH'),
        debug=debug,
        use_http=args.http,
        http_host=args.host,
        http_port=args.port or int(os.getenv('PORT', '8080')),
    )


class GCPMCPServer:
    """MCP server exposing BigQuery and other Google Cloud tools."""

    def __init__(self, config: ServerConfig, clients: Optional[GCPClients] = None):
        self.config = config
        self.clients = clients or GCPClients(config)
        self.context = ToolContext(self.clients, config)

        self.server = Server(SERVER_NAME)
        self.setup_handlers()

    async def list_resources(self) -> List[types.Resource]:
        """Schema resources for every table and view the project can see."""
        bigquery_client = self.clients.bigquery
        project_id = await self.clients.resolve_project_id()
        logger.info('Fetching datasets...')
        datasets = list(bigquery_client.list_datasets(project=project_id))
        logger.info(f'Found {len(datasets)} datasets')

        resources = []
        for dataset in datasets:
            tables = list(bigquery_client.list_tables(dataset.reference))
            logger.info(f'Found {len(tables)} tables and views in dataset {dataset.dataset_id}')
            for table in tables:
                resource_type = 'view' if table.table_type == 'VIEW' else 'table'
                resources.append(types.Resource(
                    uri=f"bigquery://{project_id}/{dataset.dataset_id}/{table.table_id}/{SCHEMA_PATH}",
                    mimeType="application/json",
                    name=f'"{dataset.dataset_id}.{table.table_id}" {resource_type} schema',
                ))

        logger.info(f'Total resources found: {len(resources)}')
        return resources

    async def read_resource(self, uri: Any) -> str:
        """Schema of the table named by ``bigquery://project/dataset/table/schema``."""
        parsed_url = urlparse(str(uri))
        path_components = parsed_url.path.strip('/').split('/')
        if parsed_url.scheme != 'bigquery' or not parsed_url.netloc or len(path_components) != 3:
            raise ValueError(f"Invalid resource URI format: {uri}")

        dataset_id, table_id, schema = path_components
        if schema != SCHEMA_PATH:
            raise ValueError("Invalid resource URI - expected schema path")

        table = self.clients.bigquery.get_table(f"{parsed_url.netloc}.{dataset_id}.{table_id}")
        schema_fields = [
            {
                'name': field.name,
                'type': field.field_type,
                'mode': field.mode,
                'description': field.description,
            }
            for field in table.schema
        ]
        return to_json(schema_fields)

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        return await registry.call(name, arguments, self.context)

    def setup_handlers(self):
        """Set up MCP request handlers."""

        @self.server.list_resources()
        async def handle_list_resources() -> List[types.Resource]:
            try:
                return await self.list_resources()
            except Exception as error:
                logger.error(f'Error in list_resources: {error}')
                raise

        @self.server.read_resource()
        async def handle_read_resource(uri) -> str:
            try:
                return await self.read_resource(uri)
            except Exception as error:
                logger.error(f'Error in read_resource: {error}')
                raise

        @self.server.list_tools()
        async def handle_list_tools() -> List[types.Tool]:
            return registry.list_tools()

        @self.server.call_tool()
        async def handle_call_tool(name: str, arguments: Dict[str, Any]) -> List[types.TextContent]:
            result = await self.call_tool(name, arguments)
            texts = [item["text"] for item in result["content"]]
            if result.get("isError"):
                # the SDK reports raised errors as isError results
                raise GCPToolError("\n".join(texts))
            return [types.TextContent(type="text", text=text) for text in texts]

    async def run_stdio(self):
        """Run the server with stdio transport."""
        from mcp.server.stdio import stdio_server

        try:
            async with stdio_server() as (read_stream, write_stream):
                await self.server.run(
                    read_stream,
                    write_stream,
                    InitializationOptions(
                        server_name=SERVER_NAME,
                        server_version=__version__,
                        capabilities=self.server.get_capabilities(
                            notification_options=NotificationOptions(),
                            experimental_capabilities={}
                        )
                    )
                )
        except Exception as error:
            logger.error(f'Stdio server error: {error}')
            raise

    async def run_http(self):
        """Run the server with HTTP transport."""
        from .http_server import MCPHTTPServer

        try:
            http_server = MCPHTTPServer(self, self.config.http_host, self.config.http_port)
            await http_server.start()
        except Exception as error:
            logger.error(f'HTTP server error: {error}')
            raise


async def main():
    """Main entry point."""
    try:
        config = parse_args()
        await validate_config(config)

        server = GCPMCPServer(config)
        logger.info(f"Registered {len(registry.names())} tools")

        if config.use_http:
            logger.info("Starting GCP MCP server with HTTP transport")
            await server.run_http()
        else:
            logger.info("Starting GCP MCP server with stdio transport")
            await server.run_stdio()

    except Exception as error:
        logger.error(f'Server error: {error}')
        sys.exit(1)


def run():
    anyio.run(main)


if __name__ == "__main__":
    run()
