"""Database models and operations for forum records and user mentions."""

from sqlalchemy import create_engine, Column, Integer, String, Text, DateTime, Index, func
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from datetime import datetime
from typing import Dict, Iterable, List, Optional
import os

Base = declarative_base()


class UserModel(Base):
    """SQLAlchemy model for users."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)
    date_inserted = Column(DateTime, nullable=False, default=datetime.now)


class DiscussionModel(Base):
    """SQLAlchemy model for discussions."""

    __tablename__ = "discussions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    category_id = Column(Integer, nullable=False, default=-1)
    name = Column(String, nullable=False, default='')
    body = Column(Text, nullable=False)
    insert_user_id = Column(Integer, nullable=True)
    date_inserted = Column(DateTime, nullable=False, default=datetime.now)
    date_updated = Column(DateTime, nullable=True, onupdate=datetime.now)


class CommentModel(Base):
    """SQLAlchemy model for comments."""

    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    discussion_id = Column(Integer, nullable=False, index=True)
    body = Column(Text, nullable=False)
    insert_user_id = Column(Integer, nullable=True)
    date_inserted = Column(DateTime, nullable=False, default=datetime.now)
    date_updated = Column(DateTime, nullable=True, onupdate=datetime.now)


class UserMentionModel(Base):
    """One user mentioned in one record. Primary key makes re-indexing idempotent."""

    __tablename__ = "user_mentions"

    user_id = Column(Integer, primary_key=True)
    record_type = Column(String, primary_key=True)
    record_id = Column(Integer, primary_key=True)
    mentioned_name = Column(String, nullable=False)
    parent_record_type = Column(String, nullable=False)
    parent_record_id = Column(Integer, nullable=False)
    date_inserted = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default='active')  # 'active', 'removed'

    __table_args__ = (
        Index('idx_mention_record', 'record_type', 'record_id'),
        Index('idx_mention_user_date', 'user_id', 'date_inserted'),
    )

    def to_dict(self) -> Dict:
        return {
            'user_id': self.user_id,
            'record_type': self.record_type,
            'record_id': self.record_id,
            'mentioned_name': self.mentioned_name,
            'parent_record_type': self.parent_record_type,
            'parent_record_id': self.parent_record_id,
            'date_inserted': self.date_inserted,
            'status': self.status,
        }


RECORD_MODELS = {
    'discussion': DiscussionModel,
    'comment': CommentModel,
}

TABLES = {
    'users': UserModel,
    'discussions': DiscussionModel,
    'comments': CommentModel,
    'user_mentions': UserMentionModel,
}


def _discussion_dict(row: DiscussionModel) -> Dict:
    return {
        'discussion_id': row.id,
        'category_id': row.category_id,
        'name': row.name,
        'body': row.body,
        'insert_user_id': row.insert_user_id,
        'date_inserted': row.date_inserted,
    }


def _comment_dict(row: CommentModel) -> Dict:
    return {
        'comment_id': row.id,
        'discussion_id': row.discussion_id,
        'body': row.body,
        'insert_user_id': row.insert_user_id,
        'date_inserted': row.date_inserted,
    }


class Database:
    """Database connection and operations manager."""

    def __init__(self, database_path: str = None):
        """
        Initialize database connection.

        Args:
            database_path: Path to SQLite database file, or ':memory:'
        """
        if database_path is None:
            database_path = os.getenv('DATABASE_PATH', 'data/forum.db')

        if database_path == ':memory:':
            self.engine = create_engine(
                'sqlite://',
                connect_args={'check_same_thread': False},
                poolclass=StaticPool
            )
        else:
            directory = os.path.dirname(database_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            self.engine = create_engine(
                f'sqlite:///{database_path}',
                connect_args={'check_same_thread': False}
            )

        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)

    # ---------------- Records ----------------

    def _add(self, row):
        session = self.Session()
        try:
            session.add(row)
            session.commit()
            return row
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def add_user(self, name: str) -> Dict:
        row = self._add(UserModel(name=name))
        return {'user_id': row.id, 'name': row.name}

    def add_discussion(
        self,
        body: str,
        name: str = '',
        category_id: Optional[int] = None,
        insert_user_id: Optional[int] = None
    ) -> Dict:
        row = self._add(DiscussionModel(
            body=body,
            name=name,
            category_id=category_id if category_id is not None else -1,
            insert_user_id=insert_user_id,
        ))
        return _discussion_dict(row)

    def add_comment(self, discussion_id: int, body: str, insert_user_id: Optional[int] = None) -> Dict:
        row = self._add(CommentModel(
            discussion_id=discussion_id,
            body=body,
            insert_user_id=insert_user_id,
        ))
        return _comment_dict(row)

    def get_record(self, record_type: str, record_id: int) -> Optional[Dict]:
        """
        Fetch a discussion or comment as a dictionary.

        Args:
            record_type: 'discussion' or 'comment'
            record_id: Primary key

        Returns:
            Record dictionary or None if not found
        """
        model = RECORD_MODELS[record_type]
        session = self.Session()
        try:
            row = session.get(model, record_id)
            if row is None:
                return None
            return _discussion_dict(row) if record_type == 'discussion' else _comment_dict(row)
        finally:
            session.close()

    def fetch_records_after(self, record_type: str, after_id: Optional[int], limit: int) -> List[Dict]:
        """
        Page through records in primary key order.

        Args:
            record_type: 'discussion' or 'comment'
            after_id: Return records with a greater ID (None for the start)
            limit: Maximum number of records

        Returns:
            List of record dictionaries
        """
        model = RECORD_MODELS[record_type]
        session = self.Session()
        try:
            query = session.query(model)
            if after_id is not None:
                query = query.filter(model.id > after_id)
            rows = query.order_by(model.id.asc()).limit(limit).all()
            to_dict = _discussion_dict if record_type == 'discussion' else _comment_dict
            return [to_dict(row) for row in rows]
        finally:
            session.close()

    def count_records_after(self, record_type: str, after_id: Optional[int]) -> int:
        model = RECORD_MODELS[record_type]
        session = self.Session()
        try:
            query = session.query(func.count(model.id))
            if after_id is not None:
                query = query.filter(model.id > after_id)
            return query.scalar() or 0
        finally:
            session.close()

    # ---------------- Users ----------------

    def find_users_by_names(self, names: Iterable[str]) -> Dict[str, Dict]:
        """
        Resolve user names case-insensitively.

        Returns:
            Mapping of lower-cased name to {'user_id', 'name'}
        """
        lowered = {name.lower() for name in names}
        if not lowered:
            return {}

        session = self.Session()
        try:
            rows = session.query(UserModel).filter(func.lower(UserModel.name).in_(lowered)).all()
            return {row.name.lower(): {'user_id': row.id, 'name': row.name} for row in rows}
        finally:
            session.close()

    # ---------------- Mentions ----------------

    def replace_mentions(self, record_type: str, record_id: int, mentions: List[Dict]) -> int:
        """
        Replace all mention rows of one record in a single transaction.

        Args:
            record_type: Mentioning record type
            record_id: Mentioning record ID
            mentions: Rows as dictionaries with UserMentionModel columns

        Returns:
            Number of rows written
        """
        session = self.Session()
        try:
            session.query(UserMentionModel).filter_by(
                record_type=record_type, record_id=record_id
            ).delete(synchronize_session=False)

            for mention in mentions:
                session.add(UserMentionModel(
                    user_id=mention['user_id'],
                    record_type=record_type,
                    record_id=record_id,
                    mentioned_name=mention['mentioned_name'],
                    parent_record_type=mention['parent_record_type'],
                    parent_record_id=mention['parent_record_id'],
                    date_inserted=mention['date_inserted'],
                    status=mention.get('status', 'active'),
                ))

            session.commit()
            return len(mentions)

        except Exception as e:
            session.rollback()
            raise e
        finally:
            session.close()

    def get_mentions_by_user(self, user_id: int, status: Optional[str] = 'active') -> List[Dict]:
        """
        Retrieve mentions of a user, oldest first.

        Args:
            user_id: Mentioned user
            status: Filter by status (None for all)

        Returns:
            List of mention dictionaries
        """
        session = self.Session()
        try:
            query = session.query(UserMentionModel).filter_by(user_id=user_id)
            if status:
                query = query.filter_by(status=status)
            rows = query.order_by(
                UserMentionModel.date_inserted.asc(),
                UserMentionModel.record_type.asc(),
                UserMentionModel.record_id.asc()
            ).all()
            return [row.to_dict() for row in rows]
        finally:
            session.close()

    def reset_table(self, table: str) -> int:
        """
        Delete all rows from a table.

        Returns:
            Number of rows deleted
        """
        model = TABLES[table]
        session = self.Session()
        try:
            deleted = session.query(model).delete(synchronize_session=False)
            session.commit()
            return deleted
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_statistics(self) -> dict:
        """
        Get database statistics.

        Returns:
            Dictionary with row counts per table
        """
        session = self.Session()
        try:
            stats = {name: session.query(model).count() for name, model in TABLES.items()}
            stats['mentioned_users'] = session.query(UserMentionModel.user_id).distinct().count()
            return stats
        finally:
            session.close()
