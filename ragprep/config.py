"""Configuration with sensible defaults."""
import os

# Embedding provider (OpenAI-compatible API)
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_DIMENSIONS = int(os.getenv("EMBEDDING_DIMENSIONS", "1536"))

# Embedding call behaviour
EMBEDDING_TIMEOUT = float(os.getenv("EMBEDDING_TIMEOUT", "60.0"))              # single text
EMBEDDING_BATCH_TIMEOUT = float(os.getenv("EMBEDDING_BATCH_TIMEOUT", "120.0"))  # per batch
EMBEDDING_MAX_RETRIES = int(os.getenv("EMBEDDING_MAX_RETRIES", "3"))
EMBEDDING_RETRY_DELAY = float(os.getenv("EMBEDDING_RETRY_DELAY", "1.0"))
EMBEDDING_BATCH_SIZE = int(os.getenv("EMBEDDING_BATCH_SIZE", "5"))
EMBEDDING_BATCH_DELAY = float(os.getenv("EMBEDDING_BATCH_DELAY", "1.0"))

# Chunking (token-based, same tokenizer family as the provider)
TOKENIZER_MODEL = os.getenv("TOKENIZER_MODEL", "gpt-4")
CHUNK_MAX_TOKENS = int(os.getenv("CHUNK_MAX_TOKENS", "512"))
CHUNK_OVERLAP_TOKENS = int(os.getenv("CHUNK_OVERLAP_TOKENS", "50"))
TABLE_MARKER = os.getenv("TABLE_MARKER", "جدول:")

# Retrieval
SIMILARITY_THRESHOLD = float(os.getenv("SIMILARITY_THRESHOLD", "0.3"))  # lowered for Persian text
MAX_CHUNKS = int(os.getenv("MAX_CHUNKS", "6"))
DIVERSITY_THRESHOLD = float(os.getenv("DIVERSITY_THRESHOLD", "0.9"))
RERANK_WEIGHT = float(os.getenv("RERANK_WEIGHT", "0.2"))                # 0=cosine only, 1=lexical only
SHORT_QUERY_TEMPLATE = os.getenv(
    "SHORT_QUERY_TEMPLATE",
    "سوال کاربر: {query} - لطفاً بر اساس اسناد موجود پاسخ دهید",
)

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
