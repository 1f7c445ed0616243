"""
File Nodes

Read/write/list/delete files, convert formats, handle archives and edit
images. Local paths are confined to settings.FILES_ROOT; file content
travels between nodes as base64.
"""

import csv
import fnmatch
import gzip
import html
import io
import json
import logging
import mimetypes
import re
import tarfile
import zipfile
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import fitz  # PyMuPDF
from PIL import Image, ImageDraw, ImageEnhance, ImageFilter, ImageOps, UnidentifiedImageError

from autoflow.config import get_settings
from autoflow.core.nodes.builtin._helpers import (
    DATA_INPUT,
    TRUE_FALSE_OPTIONS,
    as_bool,
    decode_content,
    encode_content,
    options,
    parse_json_field,
)
from autoflow.core.nodes.registry import register_node
from autoflow.schemas.workflow import NodeCategory, NodeKind, PortType
from autoflow.utils.timezone import parse_timestamp, to_iso

logger = logging.getLogger(__name__)

IMAGE_FORMATS = ("png", "jpeg", "gif", "webp")
TEXT_FORMATS = ("text", "markdown", "html", "json", "csv")
ENCODINGS = ("utf8", "base64", "binary")

MIME_TYPES = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "pdf": "application/pdf",
    "text": "text/plain",
    "markdown": "text/markdown",
    "html": "text/html",
    "json": "application/json",
    "csv": "text/csv",
    "zip": "application/zip",
    "gzip": "application/gzip",
    "tar": "application/x-tar",
    "targz": "application/gzip",
}


def files_root() -> Path:
    root = Path(get_settings().FILES_ROOT).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def sandboxed_path(raw: str) -> Path:
    """
    Resolve a user-supplied path inside FILES_ROOT.

    Raises:
        ValueError: If the path escapes the root
    """
    root = files_root()
    candidate = (root / raw.lstrip("/\\")).resolve()
    if candidate != root and root not in candidate.parents:
        raise ValueError(f"Path must be within the files directory: {raw}")
    return candidate


def guess_mime(name: str) -> str:
    return mimetypes.guess_type(name)[0] or "application/octet-stream"


def render_content(data: bytes, encoding: str) -> str:
    if encoding == "base64":
        return encode_content(data)
    if encoding == "binary":
        return data.decode("latin-1")
    return data.decode("utf-8", errors="replace")


def content_bytes(value: Any, encoding: str) -> bytes:
    """Bytes for a write: base64 decodes, binary is latin-1, anything else utf-8."""
    if isinstance(value, (dict, list)):
        value = json.dumps(value)
    text = "" if value is None else str(value)
    if encoding == "base64":
        return decode_content(text)
    if encoding == "binary":
        return text.encode("latin-1")
    return text.encode("utf-8")


def input_bytes(config_value: Any, input_data: Any, *keys: str) -> bytes:
    """
    Binary content from a base64 config field, else from the previous output.

    Raises:
        ValueError: If there is no content
    """
    source = config_value
    if not source and isinstance(input_data, str):
        source = input_data
    if not source and isinstance(input_data, Mapping):
        for key in keys or ("content", "data", "image", "file"):
            if input_data.get(key):
                source = input_data[key]
                break
    if not source:
        raise ValueError("File content is required (config or previous node output)")
    return decode_content(source)


@register_node(
    node_type="read-file",
    name="Read File",
    kind=NodeKind.ACTION,
    category=NodeCategory.FILES,
    description="Reads a file from a URL, base64 data, the previous node, or the files directory.",
    icon="FileText",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "content", "type": PortType.TEXT, "description": "Text or base64"},
        {"name": "size", "type": PortType.NUMBER},
        {"name": "mimeType", "type": PortType.TEXT},
    ],
    config_schema={
        "source": {"type": "select", "label": "Source", "required": True,
                   "options": options("url", "base64", "input", "local")},
        "filePath": {"type": "string", "label": "File Path / URL"},
        "base64Data": {"type": "text", "label": "Base64 Data"},
        "encoding": {"type": "select", "label": "Encoding", "default": "utf8", "options": options(*ENCODINGS)},
    },
)
async def read_file(input_data, config, context):
    source = config["source"]
    path = config.get("filePath") or ""
    mime_type = "application/octet-stream"

    if source == "url":
        if not path:
            raise ValueError("File path/URL is required for URL source")
        response = await context.http.send("GET", path)
        data = response.content
        mime_type = response.headers.get("content-type", "").split(";")[0] or guess_mime(path)
    elif source == "base64":
        if not config.get("base64Data"):
            raise ValueError("Base64 data is required for base64 source")
        data = decode_content(config["base64Data"])
    elif source == "input":
        if isinstance(input_data, str):
            data = input_data.encode("utf-8")
        elif isinstance(input_data, Mapping) and input_data.get("content") is not None:
            data = str(input_data["content"]).encode("utf-8")
            mime_type = input_data.get("mimeType") or mime_type
        else:
            raise ValueError("Input data must contain file content")
    elif source == "local":
        if not path:
            raise ValueError("File path is required")
        target = sandboxed_path(path)
        if not target.is_file():
            raise ValueError(f"File not found: {path}")
        data = target.read_bytes()
        mime_type = guess_mime(target.name)
    else:
        raise ValueError(f"Unknown source: {source}")

    encoding = config["encoding"]
    return {"content": render_content(data, encoding), "size": len(data), "mimeType": mime_type, "encoding": encoding}


@register_node(
    node_type="write-file",
    name="Write File",
    kind=NodeKind.ACTION,
    category=NodeCategory.FILES,
    description="Writes content to the files directory, uploads it, or returns it as base64.",
    icon="FileText",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "filePath", "type": PortType.TEXT},
        {"name": "size", "type": PortType.NUMBER},
        {"name": "success", "type": PortType.BOOLEAN},
    ],
    config_schema={
        "destination": {"type": "select", "label": "Destination", "required": True,
                        "options": options("local", "url", "base64")},
        "filePath": {"type": "string", "label": "File Path", "description": "Relative to the files directory"},
        "uploadUrl": {"type": "url", "label": "Upload URL"},
        "content": {"type": "text", "label": "Content", "description": "Leave empty to use input from previous node"},
        "encoding": {"type": "select", "label": "Encoding", "default": "utf8", "options": options(*ENCODINGS)},
        "mimeType": {"type": "string", "label": "MIME Type", "placeholder": "text/plain"},
    },
)
async def write_file(input_data, config, context):
    raw = config.get("content")
    if not raw:
        raw = input_data["content"] if isinstance(input_data, Mapping) and "content" in input_data else input_data
    data = content_bytes(raw, config["encoding"])
    destination = config["destination"]

    if destination == "url":
        if not config.get("uploadUrl"):
            raise ValueError("Upload URL is required for URL destination")
        response = await context.http.request(
            "POST",
            config["uploadUrl"],
            content=data,
            headers={"Content-Type": config.get("mimeType") or "application/octet-stream"},
        )
        return {"filePath": config["uploadUrl"], "size": len(data), "success": True, "response": response}

    if destination == "base64":
        return {"filePath": "base64", "size": len(data), "success": True, "content": encode_content(data)}

    if destination != "local":
        raise ValueError(f"Unknown destination: {destination}")
    if not config.get("filePath"):
        raise ValueError("File path is required for local destination")
    target = sandboxed_path(config["filePath"])
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    logger.info(f"📝 Wrote {len(data)} bytes to {target}")
    return {"filePath": str(target.relative_to(files_root())), "size": len(data), "success": True}


@register_node(
    node_type="delete-file",
    name="Delete File",
    kind=NodeKind.ACTION,
    category=NodeCategory.FILES,
    description="Deletes a file from the files directory or a remote URL.",
    icon="Trash2",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "success", "type": PortType.BOOLEAN},
        {"name": "filePath", "type": PortType.TEXT},
    ],
    config_schema={
        "filePath": {"type": "string", "label": "File Path / URL", "required": True},
        "requireAuth": {"type": "select", "label": "Require Authentication", "default": "false",
                        "options": TRUE_FALSE_OPTIONS},
        "service": {"type": "string", "label": "Credential Service",
                    "description": "Connected service whose token authorizes remote deletion"},
    },
)
async def delete_file(input_data, config, context):
    path = config["filePath"]
    if path.startswith(("http://", "https://")):
        headers: Dict[str, str] = {}
        if as_bool(config["requireAuth"]):
            if not config.get("service"):
                raise ValueError("Credential service is required when authentication is required")
            credential = await context.credentials.get(config["service"])
            headers["Authorization"] = credential.authorization_header()
        await context.http.delete(path, headers=headers)
        return {"success": True, "filePath": path}

    target = sandboxed_path(path)
    if not target.is_file():
        raise ValueError(f"File not found: {path}")
    target.unlink()
    logger.info(f"🗑️ Deleted {target}")
    return {"success": True, "filePath": path}


@register_node(
    node_type="list-files",
    name="List Files",
    kind=NodeKind.ACTION,
    category=NodeCategory.FILES,
    description="Lists files in a directory under the files directory.",
    icon="Folder",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "files", "type": PortType.ARRAY, "description": "name, path, size, mimeType, modifiedAt"},
        {"name": "count", "type": PortType.NUMBER},
    ],
    config_schema={
        "directoryPath": {"type": "string", "label": "Directory Path", "required": True, "default": "."},
        "recursive": {"type": "select", "label": "Recursive", "default": "false", "options": TRUE_FALSE_OPTIONS},
        "filter": {"type": "string", "label": "Filter", "placeholder": "*.txt"},
        "includeDirectories": {"type": "select", "label": "Include Directories", "default": "false",
                               "options": TRUE_FALSE_OPTIONS},
    },
)
async def list_files(input_data, config, context):
    directory = sandboxed_path(config["directoryPath"])
    if not directory.is_dir():
        raise ValueError(f"Directory not found: {config['directoryPath']}")
    pattern = config.get("filter")
    include_dirs = as_bool(config["includeDirectories"])
    entries = directory.rglob("*") if as_bool(config["recursive"]) else directory.iterdir()

    files = []
    for entry in sorted(entries):
        is_dir = entry.is_dir()
        if is_dir and not include_dirs:
            continue
        if not is_dir and pattern and not fnmatch.fnmatch(entry.name, pattern):
            continue
        stat = entry.stat()
        files.append({
            "name": entry.name,
            "path": str(entry.relative_to(directory)),
            "size": 0 if is_dir else stat.st_size,
            "mimeType": "directory" if is_dir else guess_mime(entry.name),
            "modifiedAt": to_iso(parse_timestamp(stat.st_mtime)),
            "isDirectory": is_dir,
        })
    return {"files": files, "count": len(files)}


def open_image(data: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except UnidentifiedImageError:
        raise ValueError("Content is not a recognized image")
    return image


def save_image(image: Image.Image, image_format: str, quality: int = 90) -> bytes:
    pil_format = "JPEG" if image_format in ("jpeg", "jpg") else image_format.upper()
    if pil_format == "JPEG" and image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    buffer = io.BytesIO()
    save_kwargs = {"quality": quality} if pil_format in ("JPEG", "WEBP") else {}
    image.save(buffer, format=pil_format, **save_kwargs)
    return buffer.getvalue()


def detect_format(data: bytes) -> str:
    if data.startswith(b"%PDF"):
        return "pdf"
    try:
        with Image.open(io.BytesIO(data)) as image:
            return (image.format or "png").lower()
    except UnidentifiedImageError:
        pass
    text = data.decode("utf-8", errors="replace").lstrip()
    if text.startswith(("{", "[")):
        return "json"
    if text.lower().startswith(("<!doctype html", "<html")):
        return "html"
    return "text"


def rows_to_csv(rows: Any) -> str:
    if isinstance(rows, Mapping):
        rows = [rows]
    if not isinstance(rows, list) or not all(isinstance(row, Mapping) for row in rows):
        raise ValueError("JSON to CSV needs an array of objects")
    columns: List[str] = []
    for row in rows:
        columns.extend(key for key in row if key not in columns)
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=columns)
    writer.writeheader()
    for row in rows:
        writer.writerow({key: json.dumps(value) if isinstance(value, (dict, list)) else value for key, value in row.items()})
    return buffer.getvalue()


def html_to_text(markup: str) -> str:
    markup = re.sub(r"(?is)<(script|style).*?</\1>", "", markup)
    markup = re.sub(r"(?i)<br\s*/?>|</p>|</div>|</h[1-6]>|</li>", "\n", markup)
    return html.unescape(re.sub(r"<[^>]+>", "", markup)).strip()


def markdown_to_html(text: str) -> str:
    lines = []
    for line in text.splitlines():
        heading = re.match(r"^(#{1,6})\s+(.*)$", line)
        if heading:
            level = len(heading.group(1))
            lines.append(f"<h{level}>{html.escape(heading.group(2))}</h{level}>")
        elif line.strip():
            lines.append(f"<p>{html.escape(line)}</p>")
    return "\n".join(lines)


def pdf_text(data: bytes) -> str:
    with fitz.open(stream=data, filetype="pdf") as doc:
        return "\n\n".join(page.get_text() for page in doc)


def text_pdf(text: str) -> bytes:
    doc = fitz.open()
    try:
        page = doc.new_page()
        page.insert_textbox(fitz.Rect(50, 50, page.rect.width - 50, page.rect.height - 50), text, fontsize=11)
        return doc.tobytes()
    finally:
        doc.close()


def convert_text(text: str, source: str, target: str) -> str:
    if source == target:
        return text
    if source == "json":
        try:
            parsed = json.loads(text)
        except ValueError as e:
            raise ValueError(f"Input is not valid JSON: {e}")
        if target == "csv":
            return rows_to_csv(parsed)
        return json.dumps(parsed, indent=2)
    if source == "csv":
        rows = list(csv.DictReader(io.StringIO(text)))
        if target == "json":
            return json.dumps(rows, indent=2)
        return text
    if source == "html":
        plain = html_to_text(text)
        if target == "json":
            return json.dumps({"text": plain})
        return plain
    # text / markdown
    if target == "html":
        return markdown_to_html(text)
    if target == "json":
        return json.dumps({"text": text})
    return text


@register_node(
    node_type="convert-file-format",
    name="Convert File Format",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.FILES,
    description="Converts between image, PDF and text formats (JSON, CSV, HTML, Markdown).",
    icon="FileCode",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "content", "type": PortType.TEXT, "description": "Converted content (base64)"},
        {"name": "mimeType", "type": PortType.TEXT},
        {"name": "size", "type": PortType.NUMBER},
    ],
    config_schema={
        "inputFormat": {"type": "select", "label": "Input Format", "required": True, "default": "auto",
                        "options": options("auto", "pdf", *IMAGE_FORMATS, *TEXT_FORMATS)},
        "outputFormat": {"type": "select", "label": "Output Format", "required": True,
                         "options": options("pdf", *IMAGE_FORMATS, *TEXT_FORMATS)},
        "fileContent": {"type": "text", "label": "File Content", "description": "Base64 (defaults to previous output)"},
        "options": {"type": "json", "label": "Conversion Options", "description": 'e.g. {"quality": 90}'},
    },
)
async def convert_file_format(input_data, config, context):
    data = input_bytes(config.get("fileContent"), input_data, "content", "fileContent", "image")
    source = config["inputFormat"]
    if source == "auto":
        source = detect_format(data)
    if source == "jpg":
        source = "jpeg"
    target = config["outputFormat"]
    extra = parse_json_field(config.get("options"), "options") or {}
    quality = int(extra.get("quality", 90)) if isinstance(extra, Mapping) else 90

    if source in IMAGE_FORMATS:
        image = open_image(data)
        if target in IMAGE_FORMATS:
            output = save_image(image, target, quality)
        elif target == "pdf":
            output = save_image(image.convert("RGB"), "pdf")
        else:
            raise ValueError(f"Cannot convert {source} image to {target}")
    elif source == "pdf":
        if target in ("text", "markdown"):
            output = pdf_text(data).encode("utf-8")
        elif target in IMAGE_FORMATS:
            with fitz.open(stream=data, filetype="pdf") as doc:
                if not len(doc):
                    raise ValueError("PDF has no pages")
                pixmap = doc.load_page(0).get_pixmap(alpha=False)
                image = Image.open(io.BytesIO(pixmap.tobytes("png")))
            output = save_image(image, target, quality)
        else:
            raise ValueError(f"Cannot convert pdf to {target}")
    elif source in TEXT_FORMATS:
        text = data.decode("utf-8", errors="replace")
        if target == "pdf":
            output = text_pdf(html_to_text(text) if source == "html" else text)
        elif target in TEXT_FORMATS:
            output = convert_text(text, source, target).encode("utf-8")
        else:
            raise ValueError(f"Cannot convert {source} to {target}")
    else:
        raise ValueError(f"Unsupported input format: {source}")

    return {
        "content": encode_content(output),
        "mimeType": MIME_TYPES.get(target, "application/octet-stream"),
        "size": len(output),
        "inputFormat": source,
        "outputFormat": target,
    }


def archive_entries(value: Any) -> List[Tuple[str, bytes]]:
    """[{name, content}] (content base64 or text) -> [(name, bytes)]"""
    files = parse_json_field(value, "files")
    if isinstance(files, Mapping):
        files = files.get("files") or [files]
    if not isinstance(files, list) or not files:
        raise ValueError("Files must be a non-empty array of {name, content}")
    entries = []
    for index, item in enumerate(files):
        if isinstance(item, Mapping):
            name = str(item.get("name") or item.get("path") or f"file{index + 1}")
            entries.append((name, decode_content(item.get("content", ""))))
        else:
            entries.append((f"file{index + 1}.txt", str(item).encode("utf-8")))
    return entries


def build_archive(entries: List[Tuple[str, bytes]], archive_format: str) -> bytes:
    buffer = io.BytesIO()
    if archive_format == "zip":
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for name, data in entries:
                archive.writestr(name, data)
    elif archive_format == "gzip":
        if len(entries) != 1:
            raise ValueError("GZIP compresses exactly one file; use tar.gz for several")
        return gzip.compress(entries[0][1])
    elif archive_format in ("tar", "targz"):
        mode = "w:gz" if archive_format == "targz" else "w"
        with tarfile.open(fileobj=buffer, mode=mode) as archive:
            for name, data in entries:
                info = tarfile.TarInfo(name=name)
                info.size = len(data)
                archive.addfile(info, io.BytesIO(data))
    else:
        raise ValueError(f"Unknown archive format: {archive_format}")
    return buffer.getvalue()


def sniff_archive(data: bytes) -> str:
    if data.startswith(b"PK\x03\x04") or data.startswith(b"PK\x05\x06"):
        return "zip"
    if data.startswith(b"Rar!"):
        return "rar"
    if data.startswith(b"7z\xbc\xaf\x27\x1c"):
        return "7z"
    if data.startswith(b"\x1f\x8b"):
        try:
            with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz"):
                return "targz"
        except tarfile.TarError:
            return "gzip"
    if len(data) > 262 and data[257:262] == b"ustar":
        return "tar"
    raise ValueError("Could not detect archive format")


def read_archive(data: bytes, archive_format: str, name: str = "file") -> List[Dict[str, Any]]:
    """Members of an archive as [{name, path, content (base64), size}]."""
    members: List[Tuple[str, bytes]] = []
    try:
        if archive_format == "zip":
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                for info in archive.infolist():
                    if not info.is_dir():
                        members.append((info.filename, archive.read(info)))
        elif archive_format == "gzip":
            members.append((name, gzip.decompress(data)))
        elif archive_format in ("tar", "targz"):
            mode = "r:gz" if archive_format == "targz" else "r:"
            with tarfile.open(fileobj=io.BytesIO(data), mode=mode) as archive:
                for member in archive.getmembers():
                    if member.isfile():
                        members.append((member.name, archive.extractfile(member).read()))
        elif archive_format in ("rar", "7z"):
            raise ValueError(f"{archive_format} archives are not supported")
        else:
            raise ValueError(f"Unknown archive format: {archive_format}")
    except (zipfile.BadZipFile, tarfile.TarError, OSError, EOFError) as e:
        raise ValueError(f"Invalid {archive_format} archive: {e}")

    return [
        {"name": Path(path).name, "path": path, "content": encode_content(content), "size": len(content)}
        for path, content in members
    ]


@register_node(
    node_type="compress-decompress",
    name="Compress / Decompress",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.FILES,
    description="Builds or unpacks ZIP, GZIP, TAR and TAR.GZ archives.",
    icon="Archive",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "content", "type": PortType.TEXT, "description": "Archive (base64)"},
        {"name": "files", "type": PortType.ARRAY, "description": "Unpacked files"},
        {"name": "size", "type": PortType.NUMBER},
    ],
    config_schema={
        "operation": {"type": "select", "label": "Operation", "required": True,
                      "options": options("compress", "decompress")},
        "format": {"type": "select", "label": "Format", "required": True,
                   "options": options("zip", "gzip", "tar", "targz")},
        "files": {"type": "array", "label": "Files", "description": '[{"name": "a.txt", "content": "<base64>"}]'},
        "archiveContent": {"type": "text", "label": "Archive Content", "description": "Base64 archive"},
        "outputFileName": {"type": "string", "label": "Output File Name"},
    },
)
async def compress_decompress(input_data, config, context):
    archive_format = config["format"]
    if config["operation"] == "compress":
        source = config.get("files")
        if not source:
            source = input_data.get("files") if isinstance(input_data, Mapping) else input_data
        archive = build_archive(archive_entries(source), archive_format)
        suffix = {"zip": ".zip", "gzip": ".gz", "tar": ".tar", "targz": ".tar.gz"}[archive_format]
        return {
            "content": encode_content(archive),
            "fileName": config.get("outputFileName") or f"archive{suffix}",
            "mimeType": MIME_TYPES[archive_format],
            "size": len(archive),
            "files": [],
        }

    if config["operation"] != "decompress":
        raise ValueError(f"Unknown operation: {config['operation']}")
    data = input_bytes(config.get("archiveContent"), input_data, "content", "archiveContent")
    files = read_archive(data, archive_format, name=config.get("outputFileName") or "file")
    return {"content": None, "files": files, "size": sum(item["size"] for item in files)}


@register_node(
    node_type="extract-archive",
    name="Extract Archive",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.FILES,
    description="Extracts files from ZIP, TAR or TAR.GZ archives.",
    icon="Package",
    inputs=DATA_INPUT,
    outputs=[
        {"name": "files", "type": PortType.ARRAY, "description": "name, content (base64), size, path"},
        {"name": "count", "type": PortType.NUMBER},
    ],
    config_schema={
        "archiveContent": {"type": "text", "label": "Archive Content", "description": "Base64 (defaults to previous output)"},
        "format": {"type": "select", "label": "Format", "required": True, "default": "auto",
                   "options": options("auto", "zip", "tar", "targz", "rar", "7z")},
        "extractPath": {"type": "string", "label": "Extract Path", "description": "Only this file or folder"},
    },
)
async def extract_archive(input_data, config, context):
    data = input_bytes(config.get("archiveContent"), input_data, "content", "archiveContent")
    archive_format = config["format"]
    if archive_format == "auto":
        archive_format = sniff_archive(data)

    files = read_archive(data, archive_format)
    prefix = (config.get("extractPath") or "").strip("/")
    if prefix:
        files = [item for item in files if item["path"] == prefix or item["path"].startswith(prefix + "/")]
    return {"files": files, "count": len(files), "format": archive_format}


def apply_filter(image: Image.Image, name: str) -> Image.Image:
    if name == "grayscale":
        return ImageOps.grayscale(image)
    if name == "sepia":
        return ImageOps.colorize(ImageOps.grayscale(image), "#2e1f0f", "#f0e0c0")
    if name == "blur":
        return image.filter(ImageFilter.GaussianBlur(2))
    if name == "sharpen":
        return image.filter(ImageFilter.SHARPEN)
    if name == "brighten":
        return ImageEnhance.Brightness(image).enhance(1.2)
    if name == "darken":
        return ImageEnhance.Brightness(image).enhance(0.8)
    raise ValueError(f"Unknown filter: {name}")


def _dimension(value: Any) -> Optional[int]:
    return int(value) if value not in (None, "") else None


@register_node(
    node_type="image-manipulation",
    name="Image Manipulation",
    kind=NodeKind.TRANSFORM,
    category=NodeCategory.FILES,
    description="Resize, crop, rotate, flip, filter, watermark or convert images.",
    icon="Image",
    inputs=[{"name": "data", "type": PortType.IMAGE, "description": "Image (base64)"}],
    outputs=[
        {"name": "image", "type": PortType.IMAGE, "description": "Base64 image"},
        {"name": "width", "type": PortType.NUMBER},
        {"name": "height", "type": PortType.NUMBER},
        {"name": "format", "type": PortType.TEXT},
        {"name": "metadata", "type": PortType.OBJECT},
    ],
    config_schema={
        "operation": {"type": "select", "label": "Operation", "required": True,
                      "options": options("resize", "crop", "rotate", "flip", "convert", "filter", "watermark", "metadata")},
        "imageContent": {"type": "text", "label": "Image Content", "description": "Base64 (defaults to previous output)"},
        "width": {"type": "integer", "label": "Width"},
        "height": {"type": "integer", "label": "Height"},
        "maintainAspectRatio": {"type": "select", "label": "Maintain Aspect Ratio", "default": "true",
                                "options": TRUE_FALSE_OPTIONS},
        "x": {"type": "integer", "label": "X Position"},
        "y": {"type": "integer", "label": "Y Position"},
        "angle": {"type": "number", "label": "Angle", "description": "Degrees, counter-clockwise"},
        "direction": {"type": "select", "label": "Direction", "options": options("horizontal", "vertical")},
        "outputFormat": {"type": "select", "label": "Output Format", "options": options(*IMAGE_FORMATS)},
        "filter": {"type": "select", "label": "Filter",
                   "options": options("grayscale", "sepia", "blur", "sharpen", "brighten", "darken")},
        "watermarkText": {"type": "string", "label": "Watermark Text"},
        "quality": {"type": "integer", "label": "Quality", "description": "1-100 for JPEG/WebP", "default": 90},
    },
)
async def image_manipulation(input_data, config, context):
    data = input_bytes(config.get("imageContent"), input_data, "image", "content", "imageContent")
    image = open_image(data)
    source_format = (image.format or "png").lower()
    output_format = config.get("outputFormat") or source_format
    operation = config["operation"]

    if operation == "metadata":
        info = {key: value for key, value in image.info.items() if isinstance(value, (str, int, float))}
        metadata = {"width": image.width, "height": image.height, "format": source_format, "mode": image.mode,
                    "size": len(data), "info": info}
        return {"image": encode_content(data), "width": image.width, "height": image.height,
                "format": source_format, "size": len(data), "metadata": metadata}

    width, height = _dimension(config.get("width")), _dimension(config.get("height"))
    if operation == "resize":
        if not width and not height:
            raise ValueError("Width or height is required for resize")
        if not as_bool(config["maintainAspectRatio"]):
            image = image.resize((width or image.width, height or image.height))
        elif width and height:
            image = ImageOps.contain(image, (width, height))
        elif width:
            image = image.resize((width, max(1, round(image.height * width / image.width))))
        else:
            image = image.resize((max(1, round(image.width * height / image.height)), height))
    elif operation == "crop":
        if not width or not height:
            raise ValueError("Width and height are required for crop")
        left, top = int(config.get("x") or 0), int(config.get("y") or 0)
        image = image.crop((left, top, left + width, top + height))
    elif operation == "rotate":
        image = image.rotate(float(config.get("angle") or 0), expand=True)
    elif operation == "flip":
        image = ImageOps.mirror(image) if config.get("direction") != "vertical" else ImageOps.flip(image)
    elif operation == "convert":
        if not config.get("outputFormat"):
            raise ValueError("Output format is required for convert")
    elif operation == "filter":
        if not config.get("filter"):
            raise ValueError("Filter is required for filter operation")
        image = apply_filter(image, config["filter"])
    elif operation == "watermark":
        if not config.get("watermarkText"):
            raise ValueError("Watermark text is required")
        image = image.convert("RGBA")
        draw = ImageDraw.Draw(image)
        left, top, right, bottom = draw.textbbox((0, 0), config["watermarkText"])
        position = (max(0, image.width - (right - left) - 10), max(0, image.height - (bottom - top) - 10))
        draw.text(position, config["watermarkText"], fill=(255, 255, 255, 180))
    else:
        raise ValueError(f"Unknown image operation: {operation}")

    output = save_image(image, output_format, int(config["quality"]))
    return {
        "image": encode_content(output),
        "width": image.width,
        "height": image.height,
        "format": output_format,
        "size": len(output),
        "metadata": {"operation": operation, "sourceFormat": source_format},
    }
