"""nginx routing document adapter.

Every tenant owns one ``server { ... }`` block (with its comment header)
inside the ``http { ... }`` block. New servers are inserted before the
final closing brace of the file.
"""

from pathlib import Path
import re

from tenant_provisioner.adapters.base import DocumentAdapter, DocumentScan
from tenant_provisioner.domain.documents import (
    Anchor,
    Block,
    BlockDocument,
    detect_newline,
    split_lines,
    strip_newline,
)
from tenant_provisioner.domain.model import Tenant
from tenant_provisioner.exceptions import DocumentValidationError


_SERVER_OPEN = re.compile(r"^\s*server\s*\{")
_HEADER_RULE = re.compile(r"^\s*#\s*[-=]{3,}\s*$")
_LISTEN = re.compile(r"^\s*listen\s+(?:\[[^\]]*\]:|[\w.-]+:)?(\d+)\b")
_ROOT = re.compile(r"^\s*root\s+/var/www/(?P<name>[a-z0-9][a-z0-9_-]*)(?:/|;)")
_PARAM = re.compile(r"^\s*fastcgi_param\s+(?P<key>[A-Z_]+)\s+(?P<value>[^;\s]+)\s*;")


def _code(line: str) -> str:
    """Return ``line`` without its comment and without quoted strings."""
    out: list[str] = []
    quote: str | None = None
    escaped = False
    for char in strip_newline(line):
        if quote:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
            continue
        if char in "\"'":
            quote = char
        elif char == "#":
            break
        else:
            out.append(char)
    return "".join(out)


def brace_depths(lines: list[str]) -> list[int]:
    """Return the nesting depth before each line, plus the final depth."""
    depths = [0]
    for line in lines:
        code = _code(line)
        depths.append(depths[-1] + code.count("{") - code.count("}"))
    return depths


def _closing_index(lines: list[str], depths: list[int]) -> int | None:
    """Index of the brace closing the outermost block, if it is the last line of code.

    Only the last line carrying code is considered: it must be a bare ``}``
    taking the depth from 1 to 0. Anything else means the file no longer ends
    with the ``http`` block and there is no safe insertion point.
    """
    for index in range(len(lines) - 1, -1, -1):
        code = _code(lines[index]).strip()
        if not code:
            continue
        if code == "}" and depths[index] == 1 and depths[index + 1] == 0:
            return index
        return None
    return None


def _header_title(lines: list[str]) -> str:
    for line in lines:
        stripped = strip_newline(line).strip()
        if stripped.startswith("#") and not _HEADER_RULE.match(stripped):
            return stripped.lstrip("#").strip()
    return "server"


class RoutingDocumentAdapter(DocumentAdapter):
    """Adapter for the nginx configuration routing each tenant port."""

    label = "routing"
    anchor = Anchor(
        description="final closing '}' of the http block",
        matches=lambda block: block.kind == "closing",
    )

    def parse(self, text: str, path: Path | None = None) -> BlockDocument:
        lines = split_lines(text)
        depths = brace_depths(lines)
        closing_index = _closing_index(lines, depths)

        document = BlockDocument(newline=detect_newline(text), path=path)
        pending = Block(kind="text")
        index = 0
        while index < len(lines):
            if index == closing_index:
                if pending.lines:
                    document.blocks.append(pending)
                    pending = Block(kind="text")
                document.blocks.append(Block(kind="closing", name="}", lines=lines[index:]))
                break

            line = lines[index]
            if _SERVER_OPEN.match(_code(line)):
                header: list[str] = []
                while pending.lines and strip_newline(pending.lines[-1]).strip().startswith("#"):
                    header.insert(0, pending.lines.pop())
                if pending.lines:
                    document.blocks.append(pending)
                    pending = Block(kind="text")
                end = index
                while end < len(lines) and depths[end + 1] > depths[index]:
                    end += 1
                body = lines[index : end + 1]
                document.blocks.append(Block(kind="server", name=_header_title(header), lines=header + body))
                index = end + 1
                continue

            pending.lines.append(line)
            index += 1
        else:
            if pending.lines:
                document.blocks.append(pending)
        return document

    def scan(self, document: BlockDocument) -> DocumentScan:
        scan = DocumentScan()
        for block in document.blocks:
            if block.kind != "server":
                continue
            name: str | None = None
            ports: list[int] = []
            params: dict[str, str] = {}
            for line in block.lines:
                code = _code(line)
                if match := _LISTEN.match(code):
                    ports.append(int(match[1]))
                elif match := _ROOT.match(code):
                    name = match["name"]
                elif match := _PARAM.match(code):
                    params[match["key"]] = match["value"]

            scan.bound_ports.update(ports)
            scan.tenant_ports.update(ports)
            namespace = int(params["REDIS_DB"]) if params.get("REDIS_DB", "").isdigit() else None
            if namespace is not None:
                scan.cache_namespaces.add(namespace)
            if name:
                scan.record(
                    name,
                    port=ports[0] if ports else None,
                    cache_namespace=namespace,
                    database_name=params.get("DB_DATABASE"),
                    has_route=True,
                )
        return scan

    def render_block(self, tenant: Tenant, newline: str = "\n") -> Block:
        name = tenant.name
        text = rf"""
    # =========================================================================
    # {name} - Port {tenant.port} (apps/{name}/)
    # =========================================================================
    server {{
        listen {tenant.port};
        server_name localhost;
        root /var/www/{name}/public;
        index index.php index.html;

        charset utf-8;

        # Health check endpoint (bypasses PHP)
        location /health {{
            access_log off;
            return 200 "healthy\n";
            add_header Content-Type text/plain;
        }}

        # Laravel routing
        location / {{
            try_files $uri $uri/ /index.php?$query_string;
        }}

        # Disable logging for common static files
        location = /favicon.ico {{ access_log off; log_not_found off; }}
        location = /robots.txt  {{ access_log off; log_not_found off; }}

        # Custom 404 handling via Laravel
        error_page 404 /index.php;

        # PHP-FPM configuration
        location ~ \.php$ {{
            fastcgi_pass php-fpm:9000;
            fastcgi_param SCRIPT_FILENAME $realpath_root$fastcgi_script_name;
            include fastcgi_params;

            # App-specific environment overrides
            fastcgi_param DB_DATABASE {tenant.database_name};
            fastcgi_param REDIS_DB {tenant.cache_namespace};
            fastcgi_param REDIS_PREFIX {tenant.redis_prefix};
            fastcgi_param CACHE_PREFIX {tenant.cache_prefix};
            fastcgi_param QUEUE_QUEUE {tenant.queue_name};

            # Hide PHP version
            fastcgi_hide_header X-Powered-By;

            # Development timeouts (longer for debugging with Xdebug)
            fastcgi_connect_timeout 300;
            fastcgi_send_timeout 300;
            fastcgi_read_timeout 300;

            # Buffer settings for larger responses
            fastcgi_buffer_size 128k;
            fastcgi_buffers 256 16k;
            fastcgi_busy_buffers_size 256k;
        }}

        # Deny access to hidden files (except .well-known)
        location ~ /\.(?!well-known).* {{
            deny all;
        }}

        # Deny access to sensitive files
        location ~ /\.(env|git|htaccess|htpasswd) {{
            deny all;
        }}
    }}
"""
        lines = [line.rstrip("\n") + newline for line in split_lines(text)]
        return Block(kind="server", name=f"{name} - Port {tenant.port} (apps/{name}/)", lines=lines)

    def validate(self, text: str, tenant: Tenant) -> None:
        depths = brace_depths(split_lines(text))
        if min(depths) < 0:
            raise DocumentValidationError("Routing document closes more braces than it opens")
        if depths[-1] != 0:
            raise DocumentValidationError(f"Routing document leaves {depths[-1]} brace(s) unclosed")
        entry = self.scan(self.parse(text)).entries.get(tenant.name)
        if entry is None or entry.port != tenant.port:
            raise DocumentValidationError(f"Server block for {tenant.name} missing after insertion")
