"""
Soft Delete Scope Example Models

Blog-style schema used by the HTTP surface and the test suite.
Users and posts carry a nullable ``deleted_at`` timestamp and are therefore
soft-deletable; comments and profiles are not.
"""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class User(Base):
    """
    Users
    Account owners; soft-deleted users keep their posts in the database
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    posts = relationship("Post", back_populates="author")
    profile = relationship("Profile", back_populates="user", uselist=False)

    __table_args__ = (Index("idx_users_deleted_at", "deleted_at"),)


class Post(Base):
    """
    Posts
    Authored content, soft-deletable independently of its author
    """

    __tablename__ = "posts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    content = Column(Text)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    author = relationship("User", back_populates="posts")
    comments = relationship("Comment", back_populates="post")

    __table_args__ = (Index("idx_posts_author_deleted", "author_id", "deleted_at"),)


class Comment(Base):
    """
    Comments
    Replies to posts; removed physically, never soft-deleted
    """

    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    body = Column(Text, nullable=False)
    post_id = Column(Integer, ForeignKey("posts.id"), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    post = relationship("Post", back_populates="comments")


class Profile(Base):
    """
    Profiles
    One-to-one extension of a user
    """

    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bio = Column(Text)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)

    user = relationship("User", back_populates="profile")
