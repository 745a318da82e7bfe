import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from models import Base, UserProfile, Company, UserCompany, Job
import crud


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def published_events(monkeypatch):
    events = []

    def record(event_type, data):
        events.append((event_type, data))
        return True

    monkeypatch.setattr(crud, "publish_event", record)
    return events


@pytest.fixture
def users(db):
    anna = UserProfile(id="manager-anna", first_name="Anna", last_name="Kowalska", user_type="manager")
    jan = UserProfile(id="contractor-jan", first_name="Jan", last_name="Nowak", user_type="contractor",
                      avatar_url="https://cdn.example.com/jan.png", phone="+48 987 654 321")
    piotr = UserProfile(id="contractor-piotr", first_name="Piotr", last_name="Wisniewski", user_type="contractor")
    db.add_all([anna, jan, piotr])
    db.commit()
    return {"anna": anna.id, "jan": jan.id, "piotr": piotr.id}


@pytest.fixture
def companies(db, users):
    cleanpro = Company(id="company-cleanpro", name="CleanPro Ltd.", type="contractor")
    empty = Company(id="company-empty", name="Ghost Contractors", type="contractor")
    sunny = Company(id="company-sunny", name="Sunny Residences HOA", type="manager")
    db.add_all([cleanpro, empty, sunny])
    db.add_all([
        UserCompany(user_id=users["piotr"], company_id=cleanpro.id, is_active=True, is_primary=False),
        UserCompany(user_id=users["jan"], company_id=cleanpro.id, is_active=True, is_primary=True),
        UserCompany(user_id=users["anna"], company_id=sunny.id, is_active=True, is_primary=True),
    ])
    db.commit()
    return {"cleanpro": cleanpro.id, "empty": empty.id, "sunny": sunny.id}


@pytest.fixture
def job(db):
    job = Job(id="job-stairwell", title="Stairwell cleaning")
    db.add(job)
    db.commit()
    return job.id
