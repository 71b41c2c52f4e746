"""
Podcast Store for the Intelligent Podcast Generator.
Durable, write-once storage of generated podcasts, with an in-memory
implementation and a Neo4j implementation.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Dict, Optional

from neo4j import GraphDatabase, Driver, Session, ManagedTransaction
from neo4j.exceptions import ServiceUnavailable, AuthError, ConstraintError

from models.entities import IntelligentPodcast, PodcastStatus, utcnow
from models.graph_schema import RelationshipType
from errors import InputError, NotFoundError
from config import get_settings, get_logger

logger = get_logger(__name__)


class PodcastStore(ABC):
    """
    Durable podcast storage.

    Records are inserted once; only status and progress change afterwards.
    """

    @abstractmethod
    def create(self, podcast: IntelligentPodcast) -> str:
        """Insert a new podcast and return its id."""

    @abstractmethod
    def get(self, podcast_id: str) -> Optional[IntelligentPodcast]:
        """Return the podcast, or None if it does not exist."""

    @abstractmethod
    def update_status(
        self,
        podcast_id: str,
        status: PodcastStatus,
        progress: Optional[int] = None
    ) -> None:
        """Change status (and optionally progress) of an existing podcast."""

    @abstractmethod
    def reconcile_abandoned(self, older_than: timedelta) -> int:
        """
        Mark ``generating`` podcasts not updated within ``older_than`` as ``error``.

        Returns the number of records changed.
        """

    def close(self) -> None:
        pass


class InMemoryPodcastStore(PodcastStore):
    """Process-local store for tests and single-run CLI use."""

    def __init__(self, clock=utcnow):
        self._records: Dict[str, IntelligentPodcast] = {}
        self._clock = clock

    def create(self, podcast: IntelligentPodcast) -> str:
        if podcast.id in self._records:
            raise InputError(f"Podcast {podcast.id} already exists")
        self._records[podcast.id] = podcast.model_copy(deep=True)
        return podcast.id

    def get(self, podcast_id: str) -> Optional[IntelligentPodcast]:
        record = self._records.get(podcast_id)
        return record.model_copy(deep=True) if record else None

    def update_status(
        self,
        podcast_id: str,
        status: PodcastStatus,
        progress: Optional[int] = None
    ) -> None:
        record = self._records.get(podcast_id)
        if record is None:
            raise NotFoundError(f"Podcast {podcast_id} not found")
        record.status = status
        if progress is not None:
            record.generation_progress = progress
        record.updated_at = self._clock()

    def reconcile_abandoned(self, older_than: timedelta) -> int:
        cutoff = self._clock() - older_than
        count = 0
        for record in self._records.values():
            if record.status == PodcastStatus.GENERATING and record.updated_at < cutoff:
                record.status = PodcastStatus.ERROR
                record.updated_at = self._clock()
                count += 1
        if count:
            logger.warning(f"Marked {count} abandoned podcasts as error")
        return count


class Neo4jPodcastStore(PodcastStore):
    """
    Podcast store backed by Neo4j.

    Features:
    - Uniqueness constraint on podcast id
    - Podcast node holding the full record as a JSON payload
    - Concept nodes and typed concept relationships for graph queries
    - Single write transaction per insert
    """

    def __init__(
        self,
        uri: str = None,
        user: str = None,
        password: str = None,
        driver: Driver = None
    ):
        self.settings = get_settings()
        self.uri = uri or self.settings.neo4j_uri
        self.user = user or self.settings.neo4j_user
        self.password = password or self.settings.neo4j_password

        self._driver: Optional[Driver] = driver
        if self._driver is None:
            self._connect()

    def _connect(self) -> None:
        """Establish connection to Neo4j."""
        try:
            self._driver = GraphDatabase.driver(
                self.uri,
                auth=(self.user, self.password)
            )
            self._driver.verify_connectivity()
            logger.info(f"Connected to Neo4j at {self.uri}")
        except AuthError as e:
            logger.error(f"Neo4j authentication failed: {e}")
            raise
        except ServiceUnavailable as e:
            logger.error(f"Neo4j service unavailable: {e}")
            raise

    @property
    def driver(self) -> Driver:
        if self._driver is None:
            self._connect()
        return self._driver

    @contextmanager
    def session(self) -> Session:
        """Context manager for Neo4j sessions."""
        session = self.driver.session()
        try:
            yield session
        finally:
            session.close()

    def close(self) -> None:
        if self._driver:
            self._driver.close()
            self._driver = None
            logger.info("Neo4j connection closed")

    def create_schema_and_constraints(self) -> None:
        """Create constraints and indexes used by the store."""
        statements = [
            "CREATE CONSTRAINT podcast_id IF NOT EXISTS FOR (p:IntelligentPodcast) REQUIRE p.id IS UNIQUE",
            "CREATE INDEX podcast_status IF NOT EXISTS FOR (p:IntelligentPodcast) ON (p.status)",
            "CREATE INDEX concept_podcast IF NOT EXISTS FOR (c:Concept) ON (c.podcast_id)",
        ]
        with self.session() as session:
            for statement in statements:
                session.run(statement)
        logger.info("Database schema created/verified")

    @staticmethod
    def _write_podcast(tx: ManagedTransaction, podcast: IntelligentPodcast) -> None:
        tx.run(
            """
            CREATE (p:IntelligentPodcast {
                id: $id,
                owner_id: $owner_id,
                title: $title,
                status: $status,
                generation_progress: $progress,
                created_at: $created_at,
                updated_at: $updated_at,
                payload: $payload
            })
            """,
            id=podcast.id,
            owner_id=podcast.owner_id,
            title=podcast.title,
            status=podcast.status.value,
            progress=podcast.generation_progress,
            created_at=podcast.created_at.isoformat(),
            updated_at=podcast.updated_at.isoformat(),
            payload=podcast.model_dump_json()
        )

        graph = podcast.knowledge_graph
        tx.run(
            """
            MATCH (p:IntelligentPodcast {id: $podcast_id})
            UNWIND $concepts AS concept
            CREATE (c:Concept {
                podcast_id: $podcast_id,
                id: concept.id,
                name: concept.name,
                difficulty: concept.difficulty
            })
            CREATE (p)-[:COVERS]->(c)
            """,
            podcast_id=podcast.id,
            concepts=[
                {"id": c.id, "name": c.name, "difficulty": c.difficulty.value}
                for c in graph.concepts
            ]
        )

        for kind in RelationshipType:
            edges = [
                {"from_id": r.from_id, "to_id": r.to_id}
                for r in graph.edges_of_kind(kind)
            ]
            if not edges:
                continue
            tx.run(
                f"""
                UNWIND $edges AS edge
                MATCH (a:Concept {{podcast_id: $podcast_id, id: edge.from_id}})
                MATCH (b:Concept {{podcast_id: $podcast_id, id: edge.to_id}})
                CREATE (a)-[:{kind.value.upper()}]->(b)
                """,
                podcast_id=podcast.id,
                edges=edges
            )

    def create(self, podcast: IntelligentPodcast) -> str:
        with self.session() as session:
            try:
                session.execute_write(self._write_podcast, podcast)
            except ConstraintError as e:
                raise InputError(f"Podcast {podcast.id} already exists") from e
        logger.info(
            f"Stored podcast {podcast.id} with {len(podcast.knowledge_graph.concepts)} concepts"
        )
        return podcast.id

    def get(self, podcast_id: str) -> Optional[IntelligentPodcast]:
        with self.session() as session:
            record = session.run(
                """
                MATCH (p:IntelligentPodcast {id: $id})
                RETURN p.payload AS payload, p.status AS status,
                       p.generation_progress AS progress, p.updated_at AS updated_at
                """,
                id=podcast_id
            ).single()

        if record is None:
            return None
        podcast = IntelligentPodcast.model_validate_json(record["payload"])
        podcast.status = PodcastStatus(record["status"])
        podcast.generation_progress = record["progress"]
        podcast.updated_at = datetime.fromisoformat(record["updated_at"])
        return podcast

    def update_status(
        self,
        podcast_id: str,
        status: PodcastStatus,
        progress: Optional[int] = None
    ) -> None:
        with self.session() as session:
            record = session.run(
                """
                MATCH (p:IntelligentPodcast {id: $id})
                SET p.status = $status,
                    p.generation_progress = coalesce($progress, p.generation_progress),
                    p.updated_at = $updated_at
                RETURN count(p) AS updated
                """,
                id=podcast_id,
                status=status.value,
                progress=progress,
                updated_at=utcnow().isoformat()
            ).single()

        if not record or record["updated"] == 0:
            raise NotFoundError(f"Podcast {podcast_id} not found")

    def reconcile_abandoned(self, older_than: timedelta) -> int:
        now = utcnow()
        with self.session() as session:
            record = session.run(
                """
                MATCH (p:IntelligentPodcast {status: $generating})
                WHERE p.updated_at < $cutoff
                SET p.status = $error, p.updated_at = $now
                RETURN count(p) AS reconciled
                """,
                generating=PodcastStatus.GENERATING.value,
                error=PodcastStatus.ERROR.value,
                cutoff=(now - older_than).isoformat(),
                now=now.isoformat()
            ).single()

        count = record["reconciled"] if record else 0
        if count:
            logger.warning(f"Marked {count} abandoned podcasts as error")
        return count


def build_store() -> PodcastStore:
    """Create the store selected in settings."""
    settings = get_settings()
    if settings.store_backend.lower() == "memory":
        return InMemoryPodcastStore()
    store = Neo4jPodcastStore()
    store.create_schema_and_constraints()
    return store
