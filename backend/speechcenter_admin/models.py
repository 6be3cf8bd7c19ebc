from __future__ import annotations
from sqlalchemy import CheckConstraint, Column, Date, DateTime, Enum, ForeignKey, Integer, String, Text
from .db import Base, utcnow


class Admin(Base):
	__tablename__ = "admins"
	id = Column(Integer, primary_key=True, autoincrement=True)
	email = Column(String(255), nullable=False, unique=True, index=True)
	password_hash = Column(String(255), nullable=False)
	last_login_at = Column(DateTime(timezone=True), nullable=True)
	created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class AdminSession(Base):
	__tablename__ = "admin_sessions"
	id = Column(Integer, primary_key=True, autoincrement=True)
	admin_id = Column(Integer, ForeignKey("admins.id", ondelete="CASCADE"), nullable=False)
	# sha256 of the session id carried in the cookie JWT (jti)
	token_hash = Column(String(255), nullable=False, unique=True, index=True)
	expires_at = Column(DateTime(timezone=True), nullable=False)
	created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Parent(Base):
	__tablename__ = "parents"
	id = Column(Integer, primary_key=True, autoincrement=True)
	fullname = Column(String(255), nullable=False)
	phone = Column(String(32), nullable=False, unique=True)
	created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Child(Base):
	__tablename__ = "children"
	id = Column(Integer, primary_key=True, autoincrement=True)
	fullname = Column(String(255), nullable=False)
	birth_date = Column(Date, nullable=False)
	language = Column(Enum("ru", "kz", "both", name="child_language"), nullable=False)
	parent_id = Column(Integer, ForeignKey("parents.id", ondelete="CASCADE"), nullable=False)
	created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Test(Base):
	__tablename__ = "tests"
	__table_args__ = (CheckConstraint("age_from < age_to", name="tests_age_range_check"),)
	# Not a pytest test class
	__test__ = False
	id = Column(Integer, primary_key=True, autoincrement=True)
	name = Column(String(255), nullable=False)
	age_from = Column(Integer, nullable=False)
	age_to = Column(Integer, nullable=False)
	created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
	updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class Question(Base):
	__tablename__ = "questions"
	id = Column(Integer, primary_key=True, autoincrement=True)
	# Legacy column name shared with the bot database
	test_id = Column("text_id", Integer, ForeignKey("tests.id", ondelete="CASCADE"), nullable=False)
	text_ru = Column(String(255), nullable=False)
	text_kz = Column(String(255), nullable=False)
	text_en = Column(String(255), nullable=True)


class Answer(Base):
	__tablename__ = "answers"
	id = Column(Integer, primary_key=True, autoincrement=True)
	question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False)
	text_ru = Column(String(255), nullable=False)
	text_kz = Column(String(255), nullable=False)
	text_en = Column(String(255), nullable=True)
	points = Column(Integer, default=0, nullable=False)


class TestResultRule(Base):
	__tablename__ = "test_result_rules"
	__test__ = False
	id = Column(Integer, primary_key=True, autoincrement=True)
	test_id = Column(Integer, ForeignKey("tests.id", ondelete="CASCADE"), nullable=False)
	min_score = Column(Integer, nullable=False)
	max_score = Column(Integer, nullable=False)
	label = Column(String(100), nullable=False)
	text_ru = Column(String(1000), nullable=False)
	text_kz = Column(String(1000), nullable=False)
	created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
	updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class TestSession(Base):
	# Legacy table name shared with the bot database
	__tablename__ = "sessions"
	__test__ = False
	id = Column(Integer, primary_key=True, autoincrement=True)
	test_id = Column(Integer, ForeignKey("tests.id", ondelete="CASCADE"), nullable=False)
	parent_id = Column(Integer, ForeignKey("parents.id", ondelete="CASCADE"), nullable=False)
	children_id = Column(Integer, ForeignKey("children.id", ondelete="CASCADE"), nullable=False)
	chat_id = Column(String(255), nullable=True)
	created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
	completed_at = Column(DateTime(timezone=True), nullable=True)
	status = Column(Enum("incomplete", "complete", name="test_session_status"), default="incomplete", nullable=False)
	score = Column(Integer, default=0, nullable=False)


class UserSession(Base):
	__tablename__ = "user_sessions"
	id = Column(Integer, primary_key=True, autoincrement=True)
	parent_id = Column(Integer, ForeignKey("parents.id", ondelete="CASCADE"), nullable=False)
	children_id = Column(Integer, ForeignKey("children.id", ondelete="CASCADE"), nullable=True)
	status = Column(Enum("registered", "testing", "done", name="user_session_status"), default="registered", nullable=False)
	step = Column(String(64), nullable=False)
	ui_language = Column(String(16), nullable=True)
	started_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
	last_seen_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class SessionAnswer(Base):
	__tablename__ = "sesson_answer"
	id = Column(Integer, primary_key=True, autoincrement=True)
	session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
	question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False)
	answer_id = Column(Integer, ForeignKey("answers.id", ondelete="CASCADE"), nullable=False)
	answer_text = Column(String(255), nullable=False)
	created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Lead(Base):
	__tablename__ = "leads"
	id = Column(Integer, primary_key=True, autoincrement=True)
	parent_id = Column(Integer, ForeignKey("parents.id", ondelete="CASCADE"), nullable=False)
	children_id = Column(Integer, ForeignKey("children.id", ondelete="CASCADE"), nullable=True)
	created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
	# Legacy column name shared with the bot database
	status = Column("leads", Enum("warm", "hot", name="lead"), nullable=False)


class BotRuntimeState(Base):
	__tablename__ = "bot_runtime_state"
	# Singleton: the only row has id == RUNTIME_STATE_ID (see bot_runtime.py)
	id = Column(Integer, primary_key=True, autoincrement=False)
	status = Column(String(32), nullable=False, default="stopped")
	qr_data_url = Column(Text, nullable=True)
	last_error = Column(Text, nullable=True)
	# Written by the bot worker only
	heartbeat_at = Column(DateTime(timezone=True), nullable=True)
	control_action = Column(String(32), nullable=True)
	control_token = Column(String(128), nullable=True)
	control_requested_at = Column(DateTime(timezone=True), nullable=True)
	control_processed_at = Column(DateTime(timezone=True), nullable=True)
	control_result = Column(Text, nullable=True)
	updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
