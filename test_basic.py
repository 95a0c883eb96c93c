#!/usr/bin/env python3
"""
Basic test script for the Exif AI service.
This script checks the core wiring without a model server or ExifTool.
"""

import sys
from pathlib import Path

# Add the project root to the Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))


def test_imports():
    """Test that all modules can be imported."""
    print("Testing imports...")

    from exif_ai import config, logging, models, multipart, processor, providers, server  # noqa: F401
    print("✓ Core modules imported successfully")


def test_config():
    """Test configuration defaults."""
    print("\nTesting configuration...")

    from exif_ai.config import Settings

    settings = Settings(_env_file=None, provider="OpenAI", tasks="description,tags")

    assert settings.provider == "openai"
    assert settings.tasks == ["description", "tags"]
    assert settings.tag_tags == ["XPKeywords"]
    assert settings.tag_delimiter == ";"

    print("✓ Configuration loaded successfully")


def test_models():
    """Test data models."""
    print("\nTesting data models...")

    from exif_ai.models import PipelineResult, TaskKind, TaskOutcome, TaskStatus, parse_tasks

    assert parse_tasks(["tags", "description", "tag"]) == [TaskKind.TAG, TaskKind.DESCRIPTION]

    result = PipelineResult(
        source="test.jpg",
        provider="ollama",
        tasks=[TaskKind.DESCRIPTION],
        description="A lighthouse at dusk.",
        outcomes={
            "description": TaskOutcome(task=TaskKind.DESCRIPTION, status=TaskStatus.SUCCESS, usage=12),
        },
    )
    response = result.to_response()
    assert response["model"] == "default"
    assert response["tokenUsage"] == {"description": 12, "total": 12}

    print("✓ Data models work correctly")


def test_logging():
    """Test logging setup."""
    print("\nTesting logging...")

    from exif_ai.logging import setup_logging, get_logger, MetricsLogger

    # Setup logging
    setup_logging()

    # Test logger
    logger = get_logger("test")
    logger.info("Test log message")

    # Test metrics logger
    metrics = MetricsLogger()
    metrics.log_request_processed("test.jpg", 5, 1, 1.0)
    metrics.log_request_failure("broken.jpg", "Image broken.jpg is empty")

    current_metrics = metrics.get_metrics()
    assert current_metrics["requests"] == 2
    assert current_metrics["fields_written"] == 5
    assert current_metrics["task_failures"] == 1
    assert current_metrics["failed"] == 1

    print("✓ Logging setup works correctly")


def test_provider_registry():
    """Test provider registry creation (without calling any provider)."""
    print("\nTesting provider registry creation...")

    from exif_ai.config import Settings
    from exif_ai.providers import UnknownProvider, create_provider_registry

    registry = create_provider_registry(Settings(_env_file=None))
    assert "ollama" in registry
    assert isinstance(registry.get("invalid"), UnknownProvider)

    print("✓ Provider registry created successfully")


def main():
    """Run all tests."""
    print("Running basic tests for Exif AI...")
    print("=" * 50)

    tests = [
        test_imports,
        test_config,
        test_models,
        test_logging,
        test_provider_registry,
    ]

    passed = 0
    total = len(tests)

    for test in tests:
        try:
            test()
            passed += 1
        except Exception as e:
            print(f"✗ Test {test.__name__} failed with exception: {e}")

    print("\n" + "=" * 50)
    print(f"Test Results: {passed}/{total} tests passed")

    if passed == total:
        print("🎉 All tests passed! The basic functionality is working.")
        return 0
    else:
        print("❌ Some tests failed. Please check the errors above.")
        return 1


if __name__ == "__main__":
    sys.exit(main())
