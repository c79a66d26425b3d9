"""
Seed script to populate the database with sample data for development.
Creates the users and articles tables, inserts approved articles and writes
their markdown bodies under <storage>/articles/<slug>/content.md.
"""
import asyncio
import random
import sys
from datetime import datetime, timedelta
from pathlib import Path

import asyncpg

# Add backend directory to path to import encyclopedia_ai
backend_path = Path(__file__).parent.parent / "backend"
sys.path.insert(0, str(backend_path))

from encyclopedia_ai.core.config import load_settings

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id SERIAL PRIMARY KEY,
    username TEXT UNIQUE NOT NULL,
    created_at TIMESTAMP NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS articles (
    id SERIAL PRIMARY KEY,
    slug TEXT UNIQUE NOT NULL,
    title TEXT NOT NULL,
    summary TEXT,
    category TEXT NOT NULL,
    tags TEXT[] NOT NULL DEFAULT '{}',
    views INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'PENDING',
    author_id INTEGER NOT NULL REFERENCES users(id),
    created_at TIMESTAMP NOT NULL DEFAULT now(),
    updated_at TIMESTAMP NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS articles_fts_idx ON articles
    USING GIN (to_tsvector('simple', title || ' ' || coalesce(summary, '')));
"""

AUTHORS = ["ada", "hypatia", "linnaeus", "curie"]

ARTICLES = [
    {
        "slug": "mitosis",
        "title": "Mitosis",
        "category": "Biology",
        "tags": ["cell", "genetics"],
        "summary": "Mitosis is the process by which a eukaryotic cell divides into two genetically identical daughter cells.",
        "content": (
            "# Mitosis\n\n"
            "Mitosis is a part of the cell cycle in which replicated chromosomes are separated "
            "into two new nuclei.\n\n"
            "## Phases\n\n"
            "1. Prophase\n2. Prometaphase\n3. Metaphase\n4. Anaphase\n5. Telophase\n\n"
            "Cytokinesis usually follows, splitting the cytoplasm.\n"
        ),
    },
    {
        "slug": "meiosis",
        "title": "Meiosis",
        "category": "Biology",
        "tags": ["cell", "reproduction"],
        "summary": "Meiosis is a special type of cell division of germ cells that produces four haploid gametes.",
        "content": (
            "# Meiosis\n\n"
            "Meiosis halves the chromosome number and shuffles genetic material through "
            "crossing over.\n\n"
            "It consists of two rounds: meiosis I and meiosis II.\n"
        ),
    },
    {
        "slug": "photosynthesis",
        "title": "Photosynthesis",
        "category": "Biology",
        "tags": ["plants", "energy"],
        "summary": "Photosynthesis converts light energy into chemical energy stored in glucose.",
        "content": (
            "# Photosynthesis\n\n"
            "Plants, algae and cyanobacteria capture light in chloroplasts and fix carbon "
            "dioxide into sugars, releasing oxygen.\n"
        ),
    },
    {
        "slug": "roman-law",
        "title": "Roman Law",
        "category": "History",
        "tags": ["law", "rome"],
        "summary": "Roman law is the legal system of ancient Rome, from the Twelve Tables to the Corpus Juris Civilis.",
        "content": (
            "# Roman Law\n\n"
            "The Twelve Tables (c. 450 BC) were the earliest written code. Justinian's "
            "Corpus Juris Civilis later compiled the classical jurists.\n"
        ),
    },
    {
        "slug": "printing-press",
        "title": "Printing Press",
        "category": "History",
        "tags": ["technology", "renaissance"],
        "summary": "The movable-type printing press, developed by Gutenberg around 1440, transformed the spread of knowledge.",
        "content": (
            "# Printing Press\n\n"
            "Gutenberg combined movable metal type, oil-based ink and a screw press.\n"
        ),
    },
    {
        "slug": "black-holes",
        "title": "Black Holes",
        "category": "Physics",
        "tags": ["astronomy", "gravity"],
        "summary": "A black hole is a region of spacetime where gravity is so strong that nothing can escape it.",
        "content": (
            "# Black Holes\n\n"
            "The boundary of no escape is called the event horizon. Stellar black holes "
            "form when massive stars collapse.\n"
        ),
    },
    {
        "slug": "entropy",
        "title": "Entropy",
        "category": "Physics",
        "tags": ["thermodynamics"],
        "summary": "Entropy measures the number of microscopic configurations consistent with a system's macroscopic state.",
        # Summary only; the assistant falls back to it when no body exists
        "content": None,
    },
    {
        "slug": "draft-article",
        "title": "Draft Article",
        "category": "Physics",
        "tags": [],
        "summary": "An unapproved draft that must never be returned by the assistant.",
        "content": "# Draft\n\nNot reviewed yet.\n",
        "status": "PENDING",
    },
]


async def create_schema(conn):
    """Create tables and the full-text index if they are missing."""
    await conn.execute(SCHEMA)
    print("[OK] Schema ready")


async def generate_users(conn):
    """Insert the sample authors and return their ids by username."""
    user_ids = {}
    for username in AUTHORS:
        days_ago = random.randint(30, 365)
        created_at = datetime.now() - timedelta(days=days_ago)
        user_ids[username] = await conn.fetchval(
            """
            INSERT INTO users (username, created_at) VALUES ($1, $2)
            ON CONFLICT (username) DO UPDATE SET username = EXCLUDED.username
            RETURNING id
            """,
            username,
            created_at,
        )
    print(f"[OK] Upserted {len(user_ids)} users")
    return user_ids


async def generate_articles(conn, user_ids):
    """Insert sample articles, spreading creation dates and view counts."""
    inserted = 0
    for article in ARTICLES:
        days_ago = random.randint(0, 180)
        created_at = datetime.now() - timedelta(days=days_ago)
        try:
            await conn.execute(
                """
                INSERT INTO articles
                    (slug, title, summary, category, tags, views, status, author_id, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $9)
                ON CONFLICT (slug) DO UPDATE SET
                    title = EXCLUDED.title,
                    summary = EXCLUDED.summary,
                    category = EXCLUDED.category,
                    tags = EXCLUDED.tags,
                    status = EXCLUDED.status,
                    updated_at = now()
                """,
                article["slug"],
                article["title"],
                article["summary"],
                article["category"],
                article["tags"],
                random.randint(0, 5000),
                article.get("status", "APPROVED"),
                user_ids[random.choice(AUTHORS)],
                created_at,
            )
            inserted += 1
        except asyncpg.PostgresError as e:
            print(f"[ERROR] Error inserting article {article['slug']}: {e}")
    print(f"[OK] Upserted {inserted} articles")
    return inserted


def write_contents(storage_path: Path):
    """Write markdown bodies to <storage>/articles/<slug>/content.md."""
    written = 0
    for article in ARTICLES:
        if not article["content"]:
            continue
        article_dir = storage_path / "articles" / article["slug"]
        article_dir.mkdir(parents=True, exist_ok=True)
        (article_dir / "content.md").write_text(article["content"], encoding="utf-8")
        written += 1
    print(f"[OK] Wrote {written} content files under {storage_path}")
    return written


async def seed():
    settings = load_settings()
    try:
        conn = await asyncpg.connect(settings.database_url)
    except (OSError, asyncpg.PostgresError) as e:
        print("[ERROR] Failed to connect to Postgres. Check DATABASE_URL in your .env file.")
        print(f"  Error: {e}")
        sys.exit(1)

    try:
        print("\nCreating schema...")
        await create_schema(conn)

        print("\nGenerating users...")
        user_ids = await generate_users(conn)

        print("\nGenerating articles...")
        num_articles = await generate_articles(conn, user_ids)
    finally:
        await conn.close()

    print("\nWriting article contents...")
    num_files = write_contents(Path(settings.content_storage_path))
    return len(user_ids), num_articles, num_files


def main():
    """Main function to seed the database."""
    print("Starting database seeding...")
    print("-" * 50)

    num_users, num_articles, num_files = asyncio.run(seed())

    print("\n" + "-" * 50)
    print("[OK] Database seeding completed successfully!")
    print(f"  - Users: {num_users}")
    print(f"  - Articles: {num_articles}")
    print(f"  - Content files: {num_files}")


if __name__ == "__main__":
    main()
