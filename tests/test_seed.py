from sqlalchemy.orm import Session

from app.ngoadmin.db import build_engine
from app.ngoadmin.models import Base, Role, RoleSection, User, UserSectionPermission
from scripts.init_db import ROLE_SECTIONS, seed_only


def test_seed_is_idempotent_and_prunes_stale_sections(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path/'seed.db'}"
    monkeypatch.setenv("ADMIN_EMAIL", "Jefa@Example.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "pw")
    engine = build_engine(url)
    Base.metadata.create_all(bind=engine)

    assert seed_only(url=url) == 0

    with Session(engine) as s:
        admin = s.query(User).filter(User.email == "jefa@example.com").one()
        assert admin.role.key == "admin"
        editor = s.query(Role).filter(Role.key == "editor").one()
        assert editor.section_keys == frozenset(ROLE_SECTIONS["editor"])
        editor.sections.append(RoleSection(section_key="retired-section"))
        s.add(UserSectionPermission(user_id=admin.id, section_key="old-report"))
        s.add(UserSectionPermission(user_id=admin.id, section_key="abrazando-leyendas"))
        s.commit()

    assert seed_only(url=url) == 2

    with Session(engine) as s:
        assert s.query(User).count() == 1
        assert s.query(Role).count() == 3
        assert {g.section_key for g in s.query(UserSectionPermission)} == {"abrazando-leyendas"}
        editor = s.query(Role).filter(Role.key == "editor").one()
        assert "retired-section" not in editor.section_keys
    engine.dispose()
