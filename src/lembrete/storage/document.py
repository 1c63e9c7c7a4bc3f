"""JSON 文档的原子读写

写入流程: 同目录临时文件 -> flush + fsync -> os.replace -> fsync 目录。
崩溃时读者只会看到完整的旧文档或完整的新文档。
"""

import json
import os
import tempfile
import time
from pathlib import Path
from typing import Any

from lembrete.logger import logger

__all__ = ["DocumentCorruptError", "read_json_document", "write_json_document", "quarantine_document"]


class DocumentCorruptError(ValueError):
    """文档存在但无法解析"""


def read_json_document(path: Path, default: Any = None) -> Any:
    """读取 JSON 文档；文件不存在返回 default，无法解析时抛出 DocumentCorruptError"""
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return default
    except UnicodeDecodeError as e:
        raise DocumentCorruptError(f"文档不是合法的 UTF-8: {path}: {e}") from e

    if raw.strip() == "":
        raise DocumentCorruptError(f"文档为空: {path}")
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise DocumentCorruptError(f"文档解析失败: {path}: {e}") from e


def _fsync_dir(directory: Path) -> None:
    if os.name != "posix":
        return
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def write_json_document(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(data, ensure_ascii=False, indent=2)

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise

    _fsync_dir(path.parent)
    logger.trace(f"文档已写入: {path}, bytes={len(payload)}")


def quarantine_document(path: Path) -> Path | None:
    """把损坏的文档挪到一旁，避免下一次写入把它覆盖掉"""
    target = path.with_name(f"{path.name}.corrupt-{time.strftime('%Y%m%d%H%M%S')}")
    try:
        os.replace(path, target)
    except OSError as e:
        logger.error(f"无法隔离损坏的文档 {path}: {e}")
        return None
    return target
