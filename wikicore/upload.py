#!/usr/bin/env python3
"""
Chunked, stash-based file upload.

The file is read sequentially and sent in fixed-size pieces to the
server's upload stash. The first chunk's reply assigns a filekey, which
every later chunk and the final "unstash" call must carry. Chunks of one
file are never sent in parallel: the stash expects them in offset order.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from wikicore.actions import (
    CHUNK_POLICY,
    UNSTASH_POLICY,
    ActionEngine,
    ActionResult,
    Outcome,
    Reply,
    reply_from_response,
    run_with_policy,
)
from wikicore.errors import PartialUploadFailure, TransportError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 4 * 1024 * 1024


@dataclass
class ChunkState:
    """Progress of one chunked upload."""

    filesize: int
    chunk_size: int
    offset: int = 0
    filekey: Optional[str] = None
    index: int = 0

    @property
    def total(self) -> int:
        return -(-self.filesize // self.chunk_size)

    @property
    def done(self) -> bool:
        return self.offset >= self.filesize

    @property
    def next_length(self) -> int:
        return min(self.chunk_size, self.filesize - self.offset)

    def advance(self, length: int, filekey: Optional[str]) -> None:
        """Record a stashed chunk of ``length`` bytes."""
        if length != self.next_length:
            raise PartialUploadFailure(
                f"chunk {self.index + 1} has {length} bytes, expected {self.next_length}",
                self.offset,
                self.filekey,
            )
        if self.filekey is None:
            self.filekey = filekey
        elif filekey and filekey != self.filekey:
            logger.warning(f"Server issued filekey {filekey} mid-upload; keeping {self.filekey}")
        self.offset += length
        self.index += 1


class ChunkedUpload:
    """Uploads one local file to a File: page through the upload stash."""

    def __init__(
        self,
        engine: ActionEngine,
        path: Union[str, Path],
        filename: str,
        desc: str = "",
        summary: str = "",
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        """
        Args:
            engine: Action engine of the target wiki
            path: Local file to upload
            filename: Target file name without the "File:" prefix
            desc: Text for the file description page
            summary: Upload log comment
            chunk_size: Bytes per chunk
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.engine = engine
        self.path = Path(path)
        self.filename = filename
        self.desc = desc
        self.summary = summary
        self.chunk_size = chunk_size
        self.state: Optional[ChunkState] = None

    def __repr__(self) -> str:
        return f"ChunkedUpload({self.path.name!r} -> {self.filename!r})"

    def _send_chunk(self, state: ChunkState, chunk: bytes) -> ActionResult:
        session = self.engine.session
        description = f"{session}: chunk {state.index + 1}/{state.total} of '{self.path.name}'"
        used = {"token": None}

        def attempt() -> Reply:
            form = {
                "format": "json",
                "formatversion": "2",
                "filename": self.filename,
                "filesize": str(state.filesize),
                "offset": str(state.offset),
                "stash": "1",
                "ignorewarnings": "1",
            }
            if state.filekey:
                form["filekey"] = state.filekey
            used["token"] = form["token"] = session.token
            try:
                response = self.engine.transport.post_multipart(
                    {"action": "upload"}, form, self.path.name, chunk, description
                )
            except TransportError as e:
                logger.warning(f"{description}: {e}")
                return Reply(Outcome.NO_RESPONSE)

            reply = reply_from_response(response, "upload")
            if reply.outcome is Outcome.SUCCESS and not (state.filekey or _filekey(reply.data)):
                return Reply(Outcome.ERROR, "nofilekey", reply.data)
            return reply

        return run_with_policy(
            attempt,
            self.engine.policy(CHUNK_POLICY),
            lambda: self.engine.refresh_token(used["token"]),
            description,
            "upload",
        )

    def _stash(self) -> ChunkState:
        state = ChunkState(self.path.stat().st_size, self.chunk_size)
        self.state = state

        with open(self.path, "rb") as f:
            while not state.done:
                chunk = f.read(state.next_length)
                logger.info(f"{self.engine.session}: Uploading chunk [{state.index + 1} of {state.total}] of '{self.path}'")
                result = self._send_chunk(state, chunk)
                if not result.ok:
                    raise PartialUploadFailure(
                        f"chunk {state.index + 1}/{state.total} failed after {result.attempts} attempts",
                        state.offset,
                        state.filekey,
                    )
                state.advance(len(chunk), _filekey(result.data))
        return state

    def run(self) -> ActionResult:
        """
        Stash every chunk, then publish the file under its title.

        Returns:
            ActionResult of the unstash step, or a failed result if the file
            was empty, unreadable, or a chunk could not be stashed
        """
        logger.info(f"{self.engine.session}: Uploading '{self.path}' to '{self.filename}'")
        try:
            if self.path.stat().st_size == 0:
                logger.error(f"{self}: refusing to upload an empty file")
                return ActionResult("upload", Outcome.ERROR, 0, "emptyfile")
            state = self._stash()
        except PartialUploadFailure as e:
            logger.error(f"{self}: upload aborted at offset {e.offset}: {e}")
            attempts = self.state.index if self.state else 0
            return ActionResult("upload", Outcome.ERROR, attempts, "partialupload")
        except OSError as e:
            logger.error(f"{self}: cannot read file: {e}")
            return ActionResult("upload", Outcome.ERROR, 0, "unreadablefile")

        logger.info(f"{self.engine.session}: Unstashing '{state.filekey}' as '{self.filename}'")
        return self.engine.submit(
            "upload",
            {
                "filename": self.filename,
                "filekey": state.filekey,
                "text": self.desc,
                "comment": self.summary,
                "ignorewarnings": "1",
            },
            UNSTASH_POLICY,
            description=f"{self.engine.session}: unstash '{self.filename}'",
        )


def _filekey(data: Optional[dict]) -> Optional[str]:
    if not data:
        return None
    return data.get("upload", {}).get("filekey")
