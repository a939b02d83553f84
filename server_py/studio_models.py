from sqlalchemy import Column, String, Integer, BigInteger, Text, JSON, DateTime, ForeignKey
from datetime import datetime

from studio_config import Base


def _iso(value):
    return value.isoformat() if value else None


class User(Base):
    """Users keyed by the identity provider's user id"""
    __tablename__ = 'users'

    id = Column(String(64), primary_key=True)
    email = Column(String(255), nullable=True)
    name = Column(String(255), nullable=True)
    count = Column(Integer, nullable=False, default=0, comment='completed generations')
    created_at = Column(DateTime, default=datetime.now)

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'count': self.count or 0,
            'created_at': _iso(self.created_at),
        }


class ImageRecord(Base):
    __tablename__ = 'images'

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), ForeignKey('users.id', ondelete='CASCADE'), index=True)
    prompt = Column(Text, nullable=False)
    # data:image/png;base64,... URLs
    image_urls = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=datetime.now)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'prompt': self.prompt,
            'image_urls': self.image_urls or [],
            'created_at': _iso(self.created_at),
        }


class ChatRecord(Base):
    __tablename__ = 'chats'

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), ForeignKey('users.id', ondelete='CASCADE'), index=True)
    prompt = Column(Text, nullable=False)
    response = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.now)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'prompt': self.prompt,
            'response': self.response,
            'created_at': _iso(self.created_at),
        }


class CodeRecord(Base):
    __tablename__ = 'codes'

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), ForeignKey('users.id', ondelete='CASCADE'), index=True)
    prompt = Column(Text, nullable=False)
    response = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.now)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'prompt': self.prompt,
            'response': self.response,
            'created_at': _iso(self.created_at),
        }


class MediaRecord(Base):
    """Outcome of a video / sound / music job, whatever the outcome was"""
    __tablename__ = 'media'

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), ForeignKey('users.id', ondelete='CASCADE'), index=True)
    kind = Column(String(20), nullable=False, comment='video, sound, music')
    prompt = Column(Text, nullable=False)
    task_id = Column(String(128), nullable=True, index=True)
    status = Column(String(20), nullable=False, comment='COMPLETED, FAILED, TIMEOUT')
    result_url = Column(Text, nullable=True)
    attempts = Column(Integer, default=0)
    elapsed_ms = Column(BigInteger, default=0)
    created_at = Column(DateTime, default=datetime.now)

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'kind': self.kind,
            'prompt': self.prompt,
            'task_id': self.task_id,
            'status': self.status,
            'result_url': self.result_url,
            'attempts': self.attempts or 0,
            'elapsed_ms': self.elapsed_ms or 0,
            'created_at': _iso(self.created_at),
        }


class ConversationMessage(Base):
    """Recent chat turns, trimmed per conversation"""
    __tablename__ = 'conversation_messages'

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(String(128), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    role = Column(String(16), nullable=False, comment='user, assistant')
    content = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.now)
