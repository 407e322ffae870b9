"""Pass-through relay for chunked file transfers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .constants import T_FILE_CHUNK, T_FILE_META
from .delivery import Outbox
from .envelope import FileChunk, FileMeta, make_error, make_relayed
from .registry import Connection, Session

if TYPE_CHECKING:
    from .service import RelayService


class FileTransferRelay:
    """
    Forwards fileMeta/fileChunk envelopes using the chat addressing rules.

    The relay never buffers, reorders, reassembles or verifies chunks; the
    receiving client owns all of that. A missing ``to`` broadcasts.
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("campusnet.files")

    def relay_meta(self, conn: Connection, sess: Session, msg: FileMeta, outbox: Outbox) -> None:
        env = make_relayed(
            T_FILE_META,
            sender=sess.user_id,
            to=msg.to,
            fileId=msg.file_id,
            name=msg.name,
            size=msg.size,
            mime=msg.mime,
        )
        n = self.hub.delivery.route(conn, msg.address, env, outbox)
        self.hub.stats_manager.inc("file_metas_relayed")
        self.log.info(
            "File offered file_id=%r name=%r size=%r from=%r to=%r targets=%s",
            msg.file_id,
            msg.name,
            msg.size,
            sess.user_id,
            msg.to,
            n,
        )

    def relay_chunk(self, conn: Connection, sess: Session, msg: FileChunk, outbox: Outbox) -> None:
        limit = int(self.hub.config.max_chunk_chars)
        if limit > 0 and len(msg.data_base64) > limit:
            self.hub.delivery.reply(conn, make_error("file chunk too large"), outbox)
            self.hub.stats_manager.inc("chunks_rejected")
            self.log.debug(
                "Chunk rejected file_id=%r seq=%s chars=%s limit=%s",
                msg.file_id,
                msg.seq,
                len(msg.data_base64),
                limit,
            )
            return

        env = make_relayed(
            T_FILE_CHUNK,
            sender=sess.user_id,
            to=msg.to,
            fileId=msg.file_id,
            seq=msg.seq,
            eof=msg.eof,
            dataBase64=msg.data_base64,
        )
        self.hub.delivery.route(conn, msg.address, env, outbox)
        self.hub.stats_manager.inc("chunks_relayed")

        if msg.eof is True:
            self.log.info(
                "File complete file_id=%r last_seq=%s from=%r to=%r",
                msg.file_id,
                msg.seq,
                sess.user_id,
                msg.to,
            )
