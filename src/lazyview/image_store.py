"""Image store: owns image records and performs lazy header/pixel/thumbnail loads.

The store is the only component that talks to decoders and the only one that
allocates or frees record buffers. Header reads and pixel reads are separate
so a file list can be populated from headers alone, and a report can skip
pixel data entirely.

Conventions
-----------
- ``ensure_*`` methods return True on success and False on a decoder
  failure; the failure message is attached to the record (``take_error``).
- Contract violations (scanline before pixels, bad indices) raise
  ``InvalidStateError`` without touching record state.
- Each record's lock is held for the duration of a load, so at most one
  decode per record is in flight.
"""

from __future__ import annotations

from typing import Iterator, List, Optional

import numpy as np

from lazyview.config import DEFAULT_CONFIG, StoreConfig
from lazyview.decoders import DecoderFactory, decoder_for
from lazyview.display_transform import downsample_mean_pool
from lazyview.errors import InvalidStateError, OpenFailedError, ReadFailedError
from lazyview.image_record import ImageRecord, ResidencyState
from lazyview.logger import get_logger
from lazyview.progress import CancelToken, ProgressCallback

LOGGER = get_logger(__name__)

__all__ = ["ImageStore"]


class ImageStore:
    """Ordered collection of image records with an on-demand load policy.

    Parameters
    ----------
    decoder_factory : callable, optional
        Returns an unopened decoder for a path; defaults to the format
        registry (``decoders.decoder_for``).
    config : StoreConfig, optional
        Store settings (thumbnail size).
    """

    def __init__(
        self,
        decoder_factory: Optional[DecoderFactory] = None,
        config: Optional[StoreConfig] = None,
    ) -> None:
        self._decoder_factory = decoder_factory or decoder_for
        self._config = config or DEFAULT_CONFIG.store
        self._records: List[ImageRecord] = []

    # -- collection ---------------------------------------------------------

    def __len__(self) -> int:
        return len(self._records)

    def __getitem__(self, index: int) -> ImageRecord:
        return self._records[index]

    def __iter__(self) -> Iterator[ImageRecord]:
        return iter(list(self._records))

    def __contains__(self, record: object) -> bool:
        return any(r is record for r in self._records)

    def index(self, record: ImageRecord) -> int:
        for idx, r in enumerate(self._records):
            if r is record:
                return idx
        raise InvalidStateError(f"{record.name}: not in this store")

    def register(self, filename: str, load_spec_now: bool = False) -> ImageRecord:
        """Append a new record for ``filename`` without reading anything.

        When ``load_spec_now`` is True the header is read immediately; a
        failure leaves the record broken but still registered.
        """
        record = ImageRecord(str(filename))
        self._records.append(record)
        LOGGER.debug("Registered image", extra={"image": record.name})
        if load_spec_now:
            self.ensure_spec(record)
        return record

    def remove(self, record: ImageRecord) -> None:
        """Drop a record from the store and release its buffers."""
        idx = self.index(record)
        with record.lock:
            record._release_pixels()
        del self._records[idx]
        LOGGER.debug("Removed image", extra={"image": record.name})

    def clear(self) -> None:
        """Release every record (store teardown)."""
        for record in list(self._records):
            self.remove(record)

    # -- loading ------------------------------------------------------------

    def ensure_spec(
        self, record: ImageRecord, force: bool = False, subimage: Optional[int] = None
    ) -> bool:
        """Make the record's header known.

        No-op when the spec is already known or the record is broken, unless
        ``force`` is set. A forced read discards all prior residency and
        re-reads the header from disk.
        """
        self._check_owned(record)
        with record.lock:
            if not force and (record.spec_valid or record.broken):
                return record.spec_valid
            if subimage is None:
                subimage = record.current_subimage
            if force and record.state is not ResidencyState.IGNORANT:
                record._mark_ignorant()
            decoder = None
            try:
                decoder = self._decoder_factory(record.name)
                spec = decoder.open(record.name, subimage)
                count = int(decoder.subimage_count)
            except OpenFailedError as exc:
                message = str(exc) or "could not open file"
                record._mark_broken(message)
                LOGGER.warning("Could not open: %s", message, extra={"image": record.name})
                return False
            finally:
                if decoder is not None:
                    decoder.close()
            record._mark_spec(spec, subimage, count)
            LOGGER.debug(
                "Read spec %dx%dx%d, %d channel %s",
                spec.width,
                spec.height,
                spec.depth,
                spec.nchannels,
                spec.format,
                extra={"image": record.name},
            )
            return True

    def ensure_pixels(
        self,
        record: ImageRecord,
        force: bool = False,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> bool:
        """Make the record's pixels resident, skipping the read when current.

        Parameters
        ----------
        record : ImageRecord
            Record owned by this store.
        force : bool
            Re-read header and pixels even if pixels are resident; this is
            also how a broken record is retried.
        progress_callback : callable, optional
            Called with the fraction done after each scanline; a truthy
            return value aborts the read.
        cancel_token : CancelToken, optional
            Cooperative cancellation checked between scanlines.

        Returns
        -------
        bool
            True when pixels are resident on return.
        """
        self._check_owned(record)
        with record.lock:
            if record.pixels_valid and not force:
                return True
            if not self.ensure_spec(record, force=force):
                return False
            return self._read_pixels(record, progress_callback, cancel_token)

    def _read_pixels(
        self,
        record: ImageRecord,
        progress_callback: Optional[ProgressCallback],
        cancel_token: Optional[CancelToken],
    ) -> bool:
        decoder = None
        try:
            decoder = self._decoder_factory(record.name)
            spec = decoder.open(record.name, record.current_subimage)
        except OpenFailedError as exc:
            if decoder is not None:
                decoder.close()
            message = str(exc) or "could not open file"
            record._mark_broken(message)
            LOGGER.warning("Could not open: %s", message, extra={"image": record.name})
            return False
        if spec != record.spec:
            # File changed on disk since the header read.
            record._mark_spec(spec, record.current_subimage, int(decoder.subimage_count))
        else:
            record._release_pixels()
        buffer = np.empty(spec.buffer_shape, dtype=spec.dtype)
        rows = spec.height * spec.depth
        done = 0
        try:
            for z in range(spec.depth):
                for y in range(spec.height):
                    if cancel_token is not None and cancel_token.is_cancelled():
                        raise ReadFailedError("read cancelled")
                    buffer[z, y] = decoder.read_scanline(y, z)
                    done += 1
                    if progress_callback is not None and progress_callback(done / rows):
                        raise ReadFailedError("read cancelled")
        except ReadFailedError as exc:
            del buffer
            return self._fail_read(record, str(exc) or "could not read pixels")
        except Exception as exc:
            # Backends registered from outside may leak library errors.
            del buffer
            return self._fail_read(record, f"{type(exc).__name__}: {exc}")
        finally:
            decoder.close()
        record._mark_pixels(buffer)
        LOGGER.debug("Loaded %d bytes of pixels", buffer.nbytes, extra={"image": record.name})
        return True

    @staticmethod
    def _fail_read(record: ImageRecord, message: str) -> bool:
        record.set_error(message)
        LOGGER.warning("Pixel read failed: %s", message, extra={"image": record.name})
        return False

    def ensure_thumbnail(self, record: ImageRecord, max_size: Optional[int] = None) -> bool:
        """Build a thumbnail from resident pixels, loading them if needed.

        The thumbnail is the first depth slice, mean-pooled by a power of two
        until its longest side fits ``max_size``.
        """
        self._check_owned(record)
        with record.lock:
            if record.thumbnail_valid:
                return True
            if not self.ensure_pixels(record):
                return False
            limit = int(max_size or self._config.thumbnail_size)
            frame = record.pixels[0]
            factor = 1
            while max(frame.shape[0], frame.shape[1]) / factor > limit:
                factor *= 2
            record.thumbnail = np.array(downsample_mean_pool(frame, factor))
            return True

    def select_subimage(self, record: ImageRecord, index: int) -> bool:
        """Switch the record to another subimage, re-reading its header.

        Raises
        ------
        InvalidStateError
            If the spec is unknown or ``index`` is out of range.
        """
        self._check_owned(record)
        with record.lock:
            if not record.spec_valid:
                raise InvalidStateError(f"{record.name}: spec not read")
            if index < 0 or index >= record.subimage_count:
                raise InvalidStateError(
                    f"{record.name}: subimage {index} out of range (0..{record.subimage_count - 1})"
                )
            if index == record.current_subimage:
                return True
            return self.ensure_spec(record, force=True, subimage=index)

    # -- access -------------------------------------------------------------

    def read_error(self, record: ImageRecord) -> Optional[str]:
        """Return and clear the record's last error."""
        return record.take_error()

    def scanline(self, record: ImageRecord, y: int, z: int = 0) -> np.ndarray:
        """Return a (width, nchannels) view of row ``y`` of slice ``z``.

        Raises
        ------
        InvalidStateError
            If the record is not in this store, pixels are not resident or
            the row is out of range.
        """
        self._check_owned(record)
        if not record.pixels_valid:
            raise InvalidStateError(f"{record.name}: pixels not resident; call ensure_pixels first")
        spec = record.spec
        if not (0 <= y < spec.height and 0 <= z < spec.depth):
            raise InvalidStateError(f"{record.name}: scanline y={y} z={z} out of range")
        return record.pixels[z, y]

    def close(self, record: ImageRecord) -> None:
        """Free pixel and thumbnail buffers; the spec stays resident."""
        self._check_owned(record)
        with record.lock:
            record._release_pixels()

    def total_resident_bytes(self) -> int:
        return sum(r.nbytes for r in self._records)

    def _check_owned(self, record: ImageRecord) -> None:
        if record not in self:
            raise InvalidStateError(f"{record.name}: not in this store")
