import tarfile


# LZ4 block framing (wire compatible with lz4-java's LZ4BlockOutputStream)
LZ4_BLOCK_MAGIC = b"LZ4Block"  # 8 bytes

COMPRESSION_LEVEL_BASE = 10
METHOD_RAW = 0x10
METHOD_LZ4 = 0x20

# Per-block checksum: XXH32 with a fixed seed, masked to 28 bits
XXHASH_SEED = 0x9747B28C
BLOCK_CHECKSUM_MASK = 0x0FFFFFFF

MIN_BLOCK_SIZE = 64
MAX_BLOCK_SIZE = 1 << 25  # 32 MiB
DEFAULT_BLOCK_SIZE = 8192


# Container entry kinds
KIND_FILE = 0
KIND_DIR = 1
KIND_OTHER = 2  # foreign tar member types, never written

TAR_FORMAT = tarfile.PAX_FORMAT


COPY_BUFSIZE = 64 * 1024
DEFAULT_CHECKSUM = "crc32"

LOG_LEVEL_ENV = "TARLZ4_LOG_LEVEL"
DEFAULT_LOG_LEVEL = "WARNING"
