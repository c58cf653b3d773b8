import pytest
import yaml

from composetest.exceptions import ConfigurationError
from composetest.PARSERS.compose_parser import ComposeParser


def test_parse(tmp_path):
    compose_content = {
        'services': {
            'web': {
                'image': 'nginx:latest',
                'ports': ['8080:80', {'published': 8443, 'target': 443}],
                'depends_on': {'db': {'condition': 'service_healthy'}},
            },
            'db': {
                'image': 'postgres:16',
                'healthcheck': {'test': ['CMD', 'pg_isready']},
            },
            'worker': {
                'build': {'context': './worker'},
                'healthcheck': {'test': ['NONE']},
            },
            'cron': {
                'image': 'alpine',
                'healthcheck': {'test': ['CMD', 'true'], 'disable': True},
            },
        },
        'volumes': {
            'db_data': {}
        }
    }

    compose_file = tmp_path / "docker-compose.yml"
    with open(compose_file, 'w') as f:
        yaml.dump(compose_content, f)

    parser = ComposeParser()
    config = parser.parse(str(compose_file))

    assert set(config.services) == {'web', 'db', 'worker', 'cron'}
    assert config.services['web'].name == 'web'
    assert config.services['web'].has_healthcheck is False
    assert config.services['db'].has_healthcheck is True
    assert config.services['worker'].has_healthcheck is False
    assert config.services['cron'].has_healthcheck is False


def test_parse_files_merges_overrides(tmp_path):
    base = tmp_path / "compose.yml"
    base.write_text(
        "services:\n"
        "  web:\n"
        "    image: nginx:1.25\n"
        "  db:\n"
        "    image: postgres:16\n"
        "    healthcheck:\n"
        "      test: ['CMD', 'pg_isready']\n"
    )
    override = tmp_path / "compose.override.yml"
    override.write_text(
        "services:\n"
        "  web:\n"
        "    healthcheck:\n"
        "      test: ['CMD', 'true']\n"
        "  db:\n"
        "    image: postgres:17\n"
        "  cache:\n"
        "    image: redis:7\n"
    )

    config = ComposeParser().parse_files([base, override])

    assert set(config.services) == {'web', 'db', 'cache'}
    assert config.services['web'].has_healthcheck is True
    assert config.services['db'].has_healthcheck is True
    assert config.services['cache'].has_healthcheck is False


def test_override_can_disable_healthcheck(tmp_path):
    base = tmp_path / "compose.yml"
    base.write_text("services:\n  web:\n    healthcheck:\n      test: ['CMD', 'true']\n")
    override = tmp_path / "compose.ci.yml"
    override.write_text("services:\n  web:\n    healthcheck:\n      disable: true\n")

    config = ComposeParser().parse_files([base, override])

    assert config.services['web'].has_healthcheck is False


def test_interpolation():
    content = (
        "services:\n"
        "  ${FRONT:-web}:\n"
        "    image: nginx\n"
        "  ${BACK}:\n"
        "    image: api\n"
        "  $$literal:\n"
        "    image: busybox\n"
    )

    config = ComposeParser({'BACK': 'api'}).parse_from_string(content)

    assert set(config.services) == {'web', 'api', '$literal'}


def test_unset_variables_become_empty(caplog):
    config = ComposeParser().parse_from_string("services:\n  \"web${SUFFIX}\":\n    image: nginx\n")

    assert set(config.services) == {'web'}
    assert "SUFFIX" in caplog.text


def test_required_variable():
    with pytest.raises(ConfigurationError, match="DB_PASSWORD is required"):
        ComposeParser().parse_from_string("services:\n  db:\n    image: ${DB_PASSWORD:?set it}\n")


@pytest.mark.parametrize("content", ["services: [unclosed", "- just\n- a list\n"])
def test_invalid_files(content):
    with pytest.raises(ConfigurationError):
        ComposeParser().parse_from_string(content)


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        ComposeParser().parse(tmp_path / "nope.yml")


def test_empty_file():
    assert ComposeParser().parse_from_string("").services == {}
