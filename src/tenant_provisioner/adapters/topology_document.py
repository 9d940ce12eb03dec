"""docker-compose topology document adapter.

The compose file is split on comment header groups::

    # -----------------------------------------------------------------------------
    # Networks
    # -----------------------------------------------------------------------------

Column-0 groups open a ``section`` block, indented groups open a ``service``
block. New queue workers are inserted right before the ``Networks`` section,
which every version of the document carries.
"""

from collections.abc import Iterator
from dataclasses import dataclass
import logging
from pathlib import Path
import re

import yaml

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


logger = logging.getLogger(__name__)

ROUTING_SERVICE = "nginx"
POOL_SERVICE = "php-fpm"
WORKER_PREFIX = "queue-"
NETWORKS_SECTION = "Networks"

_RULE = re.compile(r"^(?P<indent> *)# ?[-=]{3,}\s*$")
_TITLE = re.compile(r"^(?P<indent> *)# (?P<title>.*\S)\s*$")
_TOP_LEVEL_KEY = re.compile(r"^(?P<key>[A-Za-z0-9_.-]+):")
_SERVICE_KEY = re.compile(r"^  (?P<name>[A-Za-z0-9_.-]+):\s*(?:#.*)?$")
_SERVICE_FIELD = re.compile(r"^    (?P<key>[A-Za-z0-9_.-]+):")
_LIST_ITEM = re.compile(r"^(?P<indent>\s*)-\s*(?P<value>.*?)\s*$")
_PORT_NUMBER = re.compile(r"(?<![\w.])(\d{1,5})(?![\w.])")
_REDIS_DB = re.compile(r"\bREDIS_DB\s*(?:=|:\s*)[\"']?(\d+)")
_DB_DATABASE = re.compile(r"\bDB_DATABASE\s*(?:=|:\s*)[\"']?([A-Za-z0-9_-]+)")
_APPS_MOUNT = re.compile(r"\./apps/(?P<name>[a-z0-9][a-z0-9_-]*):/var/www/")
_DATABASES = re.compile(
    r"^(?P<head>\s*(?:-\s*)?POSTGRES_MULTIPLE_DATABASES\s*(?:=|:\s*))"
    r"(?P<quote>[\"']?)(?P<value>[^\"'\r\n]*?)(?P=quote)(?P<tail>\s*)$"
)


@dataclass(frozen=True, slots=True)
class _Line:
    block_index: int
    line_index: int
    raw: str
    top: str | None
    service: str | None
    field: str | None

    @property
    def text(self) -> str:
        return strip_newline(self.raw)

    @property
    def ending(self) -> str:
        return self.raw[len(self.text) :]

    @property
    def is_comment(self) -> bool:
        return self.text.lstrip().startswith("#")


def _is_header_group(lines: list[str], index: int) -> re.Match[str] | None:
    if index + 2 >= len(lines):
        return None
    first = _RULE.match(strip_newline(lines[index]))
    if not first:
        return None
    title = _TITLE.match(strip_newline(lines[index + 1]))
    last = _RULE.match(strip_newline(lines[index + 2]))
    if not title or _RULE.match(strip_newline(lines[index + 1])) or not last:
        return None
    if title["indent"] != first["indent"] or last["indent"] != first["indent"]:
        return None
    return title


def _walk(document: BlockDocument) -> Iterator[_Line]:
    top: str | None = None
    service: str | None = None
    field: str | None = None
    for block_index, line_index, raw in document.iter_lines():
        text = strip_newline(raw)
        stripped = text.strip()
        if stripped and not stripped.startswith("#"):
            if match := _TOP_LEVEL_KEY.match(text):
                top, service, field = match["key"], None, None
            elif top == "services" and (match := _SERVICE_KEY.match(text)):
                service, field = match["name"], None
            elif service and (match := _SERVICE_FIELD.match(text)):
                field = match["key"]
        yield _Line(block_index, line_index, raw, top, service, field)


def _last(document: BlockDocument, predicate) -> _Line | None:
    found = None
    for line in _walk(document):
        if not line.is_comment and predicate(line):
            found = line
    return found


def _ports_in(value: str) -> set[int]:
    cleaned = value.strip().strip("\"'").split("/", 1)[0]
    return {int(number) for number in _PORT_NUMBER.findall(cleaned) if 0 < int(number) <= 65535}


class TopologyDocumentAdapter(DocumentAdapter):
    """Adapter for the docker-compose file describing every running service."""

    label = "topology"
    anchor = Anchor(
        description=f"'# {NETWORKS_SECTION}' section header",
        matches=lambda block: block.kind == "section" and block.name == NETWORKS_SECTION,
    )

    def parse(self, text: str, path: Path | None = None) -> BlockDocument:
        lines = split_lines(text)
        document = BlockDocument(newline=detect_newline(text), path=path)
        current = Block(kind="preamble")
        for index, line in enumerate(lines):
            title = _is_header_group(lines, index)
            if title is not None:
                if current.lines:
                    document.blocks.append(current)
                kind = "section" if not title["indent"] else "service"
                current = Block(kind=kind, name=title["title"])
            current.lines.append(line)
        if current.lines:
            document.blocks.append(current)
        return document

    def scan(self, document: BlockDocument) -> DocumentScan:
        scan = DocumentScan()
        for line in _walk(document):
            if line.is_comment or not line.text.strip():
                continue
            worker = (
                line.service[len(WORKER_PREFIX) :]
                if line.top == "services" and line.service and line.service.startswith(WORKER_PREFIX)
                else None
            )

            if worker and line.field is None and _SERVICE_KEY.match(line.text):
                scan.record(worker, has_worker=True)

            if line.top == "services" and line.field == "ports" and (item := _LIST_ITEM.match(line.text)):
                ports = _ports_in(item["value"])
                scan.bound_ports |= ports
                if line.service == ROUTING_SERVICE:
                    scan.tenant_ports |= ports

            if match := _REDIS_DB.search(line.text):
                namespace = int(match[1])
                scan.cache_namespaces.add(namespace)
                if worker:
                    scan.record(worker, cache_namespace=namespace)

            if worker and (match := _DB_DATABASE.search(line.text)):
                scan.record(worker, database_name=match[1])

            for match in _APPS_MOUNT.finditer(line.text):
                scan.record(match["name"])
        return scan

    def render_block(self, tenant: Tenant, newline: str = "\n") -> Block:
        name = tenant.name
        text = f"""\
  # ---------------------------------------------------------------------------
  # Queue Worker - {name} (apps/{name}/)
  # ---------------------------------------------------------------------------
  {WORKER_PREFIX}{name}:
    build:
      context: .
      dockerfile: docker/common/php-fpm/Dockerfile
      target: development
    container_name: laravel-queue-{name}
    restart: unless-stopped
    working_dir: /var/www/{name}
    command: php artisan queue:work redis --queue={tenant.queue_name} --sleep=3 --tries=3 --max-time=3600 --verbose
    volumes:
      - ./apps/{name}:/var/www/{name}
      - ./docker/development/php/php.ini:/usr/local/etc/php/conf.d/custom.ini:ro
    environment:
      - APP_ENV=${{APP_ENV:-local}}
      - APP_DEBUG=${{APP_DEBUG:-true}}
      - APP_KEY=${{{tenant.env_var_name}_KEY:-}}
      - DB_CONNECTION=pgsql
      - DB_HOST=postgres
      - DB_PORT=5432
      - DB_DATABASE={tenant.database_name}
      - DB_USERNAME=${{DB_USERNAME:-laravel}}
      - DB_PASSWORD=${{DB_PASSWORD:-secret}}
      - REDIS_CLIENT=phpredis
      - REDIS_HOST=redis
      - REDIS_PORT=6379
      - REDIS_PASSWORD=${{REDIS_PASSWORD:-}}
      - REDIS_DB={tenant.cache_namespace}
      - REDIS_PREFIX={tenant.redis_prefix}
      - CACHE_STORE=redis
      - CACHE_PREFIX={tenant.cache_prefix}
      - QUEUE_CONNECTION=redis
      - QUEUE_QUEUE={tenant.queue_name}
      - LOG_CHANNEL=stack
      - LOG_LEVEL=debug
    depends_on:
      {POOL_SERVICE}:
        condition: service_healthy
    networks:
      - backend

"""
        lines = [line.rstrip("\n") + newline for line in split_lines(text)]
        return Block(kind="service", name=f"Queue Worker - {name} (apps/{name}/)", lines=lines)

    def apply_secondary_edits(self, document: BlockDocument, tenant: Tenant) -> list[str]:
        applied: list[str] = []
        name = tenant.name

        port_line = _last(
            document,
            lambda line: line.service == ROUTING_SERVICE and line.field == "ports" and "NGINX_PORT" in line.text,
        )
        if self._insert_item_after(
            document, port_line, f'"${{NGINX_PORT_{tenant.env_var_name}:-{tenant.port}}}:{tenant.port}"'
        ):
            applied.append(f"{ROUTING_SERVICE} port binding {tenant.port}")

        routing_mount = _last(
            document,
            lambda line: line.service == ROUTING_SERVICE
            and line.field == "volumes"
            and "./apps/" in line.text
            and line.text.rstrip().endswith(":ro"),
        )
        if self._insert_item_after(document, routing_mount, f"./apps/{name}:/var/www/{name}:ro"):
            applied.append(f"{ROUTING_SERVICE} read-only mount apps/{name}")

        pool_mount = _last(
            document,
            lambda line: line.service == POOL_SERVICE
            and line.field == "volumes"
            and "./apps/" in line.text
            and not line.text.rstrip().endswith(":ro"),
        )
        if self._insert_item_after(document, pool_mount, f"./apps/{name}:/var/www/{name}"):
            applied.append(f"{POOL_SERVICE} mount apps/{name}")

        if self._append_database(document, tenant.database_name):
            applied.append(f"database {tenant.database_name}")

        return applied

    def _insert_item_after(self, document: BlockDocument, line: _Line | None, value: str) -> bool:
        if line is None:
            logger.warning("No anchor line for %s in %s, skipping", value, document.path)
            return False
        item = _LIST_ITEM.match(line.text)
        indent = item["indent"] if item else "      "
        document.insert_line_after(
            line.block_index, line.line_index, f"{indent}- {value}{line.ending or document.newline}"
        )
        return True

    def _append_database(self, document: BlockDocument, database: str) -> bool:
        for line in _walk(document):
            if line.is_comment:
                continue
            match = _DATABASES.match(line.text)
            if not match:
                continue
            existing = [entry.strip() for entry in match["value"].split(",") if entry.strip()]
            if database in existing:
                return False
            value = ",".join([match["value"].rstrip(), database]) if existing else database
            replacement = f"{match['head']}{match['quote']}{value}{match['quote']}{match['tail']}{line.ending}"
            document.replace_line(line.block_index, line.line_index, replacement)
            return True
        logger.warning("POSTGRES_MULTIPLE_DATABASES not found in %s, skipping", document.path)
        return False

    def validate(self, text: str, tenant: Tenant) -> None:
        try:
            parsed = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise DocumentValidationError(f"Topology document is no longer valid YAML: {exc}") from exc
        services = parsed.get("services") if isinstance(parsed, dict) else None
        if not isinstance(services, dict):
            raise DocumentValidationError("Topology document has no 'services' mapping")
        if f"{WORKER_PREFIX}{tenant.name}" not in services:
            raise DocumentValidationError(f"Service {WORKER_PREFIX}{tenant.name} missing after insertion")
