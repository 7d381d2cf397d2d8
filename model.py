from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# sqlite_autoincrement keeps ids of deleted rows from being handed out again


class User(db.Model):
    __tablename__ = 'users'
    __table_args__ = {'sqlite_autoincrement': True}

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(150), unique=True, nullable=False)
    password = db.Column(db.String(200), nullable=False)
    external_id = db.Column(db.String(200), unique=True, nullable=False)
    name = db.Column(db.String(150))
    email = db.Column(db.String(200))


class Category(db.Model):
    __tablename__ = 'categories'
    __table_args__ = {'sqlite_autoincrement': True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    color = db.Column(db.String(20), nullable=False)


class Task(db.Model):
    __tablename__ = 'tasks'
    __table_args__ = {'sqlite_autoincrement': True}

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    category_id = db.Column(db.Integer, index=True)
    priority = db.Column(db.String(10), nullable=False, default='medium')
    due_date = db.Column(db.DateTime)
    completed = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False)
    updated_at = db.Column(db.DateTime, nullable=False)


class Subtask(db.Model):
    __tablename__ = 'subtasks'
    __table_args__ = {'sqlite_autoincrement': True}

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    task_id = db.Column(db.Integer, nullable=False, index=True)
    completed = db.Column(db.Boolean, nullable=False, default=False)


class AiSuggestion(db.Model):
    __tablename__ = 'ai_suggestions'
    __table_args__ = {'sqlite_autoincrement': True}

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, nullable=False, index=True)
    suggestion = db.Column(db.Text, nullable=False)
    priority = db.Column(db.String(10))
    created_at = db.Column(db.DateTime, nullable=False)
