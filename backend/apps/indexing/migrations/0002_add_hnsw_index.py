"""
HNSW index on doc_chunks.embedding.

Uses vector_cosine_ops so the index serves the `<=>` (cosine distance)
ordering issued by PgVectorIndex. Chunks are ingested and queried with the
same metric; switching operator classes requires re-creating this index.

Filtered searches rely on hnsw.iterative_scan, so the server needs the
vector extension at version 0.8.0 or later.
"""
from django.db import migrations


class Migration(migrations.Migration):

    dependencies = [
        ('indexing', '0001_initial'),
    ]

    operations = [
        migrations.RunSQL(
            sql="""
                CREATE INDEX IF NOT EXISTS doc_chunks_embedding_hnsw_idx
                ON doc_chunks
                USING hnsw (embedding vector_cosine_ops)
                WITH (m = 16, ef_construction = 64);
            """,
            reverse_sql="DROP INDEX IF EXISTS doc_chunks_embedding_hnsw_idx;"
        ),
    ]
