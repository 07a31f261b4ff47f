from world_engine.lorebook.bm25 import bm25_score, normalize_scores, tokenize  # noqa: F401
from world_engine.lorebook.embeddings import (  # noqa: F401
    EmbeddingClient,
    EmbeddingError,
    SemanticRanker,
    content_hash,
    cosine_similarity,
)
from world_engine.lorebook.levenshtein import fuzzy_match, levenshtein_distance  # noqa: F401
from world_engine.lorebook.matcher import (  # noqa: F401
    LorebookMatcher,
    compile_keyword_regex,
    keyword_matches,
)
from world_engine.lorebook.retriever import (  # noqa: F401
    RankedEntry,
    rank_entries,
    retrieve_entries,
    retrieve_entries_async,
)
