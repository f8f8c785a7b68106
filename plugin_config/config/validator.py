"""
Configuration Validator for the access-tracking plugin.

This module provides configuration validation with:
- Required-field checks on raw candidates (missing fields are never filled in)
- Schema validation using Pydantic models, one error per violated rule
- Pluggable validation rules producing warnings and cross-field findings
- Validation statistics
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from packaging import version
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .schema import (
    PerformanceSettings,
    PluginConfiguration,
    ValidationIssue,
    ValidationResult,
)

logger = logging.getLogger(__name__)

Findings = Tuple[List[ValidationIssue], List[ValidationIssue]]


class ValidationRule:
    """Base class for validation rules that run on schema-valid configurations."""

    def __init__(self, name: str, description: str):
        self.name = name
        self.description = description

    def validate(self, config: PluginConfiguration) -> Findings:
        """
        Validate configuration against this rule.

        Args:
            config: Schema-valid configuration

        Returns:
            Tuple of (errors, warnings)
        """
        raise NotImplementedError


class PathFilterRule(ValidationRule):
    """Flags suspicious include/exclude path filters."""

    def __init__(self):
        super().__init__(
            "path_filters",
            "Checks path filters for duplicates, leading separators and conflicts"
        )

    def validate(self, config: PluginConfiguration) -> Findings:
        warnings = []

        for field_name in ('included_paths', 'excluded_paths'):
            paths = getattr(config, field_name)
            seen = set()
            for index, path in enumerate(paths):
                if path in seen:
                    warnings.append(ValidationIssue(
                        field=f"{field_name}.{index}",
                        message=f"duplicate path: {path}"
                    ))
                seen.add(path)

                if path.startswith(('/', '\\')):
                    warnings.append(ValidationIssue(
                        field=f"{field_name}.{index}",
                        message="starts with a separator which might cause issues"
                    ))

        conflicting = [
            included for included in config.included_paths
            if any(included.startswith(excluded) or excluded.startswith(included)
                   for excluded in config.excluded_paths)
        ]
        if conflicting:
            warnings.append(ValidationIssue(
                field="included_paths",
                message=f"conflicting include/exclude paths: {', '.join(conflicting)}"
            ))

        return [], warnings


class PerformanceRule(ValidationRule):
    """Warns about settings that are legal but likely to hurt performance."""

    def __init__(self):
        super().__init__(
            "performance",
            "Validates performance settings for optimal operation"
        )

    def validate(self, config: PluginConfiguration) -> Findings:
        warnings = []

        if config.min_interval < 100:
            warnings.append(ValidationIssue(
                field="min_interval",
                message="below 100ms may cause performance issues"
            ))

        if config.batch_size > 100:
            warnings.append(ValidationIssue(
                field="batch_size",
                message="above 100 may cause memory issues"
            ))

        if config.max_cache_size > 5000:
            warnings.append(ValidationIssue(
                field="max_cache_size",
                message="above 5000 may cause memory issues"
            ))

        performance = config.performance
        if performance.max_concurrent_ops > 10:
            warnings.append(ValidationIssue(
                field="performance.max_concurrent_ops",
                message="above 10 may cause performance issues"
            ))

        if performance.cache_cleanup_interval < 10000:
            warnings.append(ValidationIssue(
                field="performance.cache_cleanup_interval",
                message="below 10 seconds may cause performance issues"
            ))

        return [], warnings


class ConsistencyRule(ValidationRule):
    """Validates cross-field relationships."""

    def __init__(self):
        super().__init__(
            "consistency",
            "Validates cross-field constraints"
        )

    def validate(self, config: PluginConfiguration) -> Findings:
        warnings = []

        if config.min_interval > config.auto_flush_interval:
            warnings.append(ValidationIssue(
                field="min_interval",
                message="greater than auto_flush_interval which may cause unexpected behavior"
            ))

        if config.batch_size > config.max_cache_size:
            warnings.append(ValidationIssue(
                field="batch_size",
                message="greater than max_cache_size which may cause inefficient processing"
            ))

        if config.performance.max_concurrent_ops > config.batch_size:
            warnings.append(ValidationIssue(
                field="performance.max_concurrent_ops",
                message="greater than batch_size which may be inefficient"
            ))

        key = config.counter_key
        if '__' in key:
            warnings.append(ValidationIssue(
                field="counter_key",
                message="contains double underscores which might cause issues"
            ))
        if key.lower() != key and key.upper() != key:
            warnings.append(ValidationIssue(
                field="counter_key",
                message="uses mixed case which might cause confusion"
            ))

        return [], warnings


def _required_fields(model: type) -> List[str]:
    return [name for name in model.model_fields]


class ConfigurationValidator:
    """
    Configuration validator combining schema checks and validation rules.

    ``validate`` is pure with respect to its input: it never mutates or
    completes the candidate.
    """

    def __init__(self, rules: Optional[List[ValidationRule]] = None):
        self.rules: List[ValidationRule] = rules if rules is not None else [
            PathFilterRule(),
            PerformanceRule(),
            ConsistencyRule(),
        ]

        # Validation statistics
        self.validation_count = 0
        self.error_count = 0
        self.warning_count = 0

    def validate(self, candidate: Union[PluginConfiguration, Mapping[str, Any]]) -> ValidationResult:
        """
        Validate a candidate configuration.

        Args:
            candidate: Configuration model or raw mapping

        Returns:
            ValidationResult listing errors and warnings
        """
        self.validation_count += 1

        if isinstance(candidate, BaseModel):
            data = candidate.model_dump(mode="json")
        elif isinstance(candidate, Mapping):
            data = dict(candidate)
        else:
            return self._finish([ValidationIssue(
                field="",
                message=f"configuration must be a mapping, got {type(candidate).__name__}"
            )], [])

        errors = self._check_required_fields(data)

        try:
            config = PluginConfiguration.model_validate(data)
        except PydanticValidationError as e:
            errors.extend(self._convert_errors(e))

        # rules only run against a complete, schema-valid configuration
        if errors:
            return self._finish(errors, [])

        return self._finish(*self._run_rules(config))

    def validate_partial(
        self,
        current: PluginConfiguration,
        updates: Mapping[str, Any]
    ) -> ValidationResult:
        """
        Validate a partial update against the current configuration.

        Args:
            current: Current configuration
            updates: Proposed sparse updates

        Returns:
            ValidationResult for the merged candidate
        """
        merged = current.model_dump(mode="json")
        apply_nested_updates(merged, updates)
        return self.validate(merged)

    def validate_against_version(
        self,
        candidate: Union[PluginConfiguration, Mapping[str, Any]],
        schema_version: str
    ) -> ValidationResult:
        """Validate and additionally warn when the candidate's version differs."""
        result = self.validate(candidate)
        if isinstance(candidate, PluginConfiguration):
            candidate_version = candidate.version
        else:
            candidate_version = candidate.get('version')

        if candidate_version == schema_version:
            return result

        message = f"version {candidate_version} does not match schema version {schema_version}"
        try:
            if isinstance(candidate_version, str) and version.parse(candidate_version) > version.parse(schema_version):
                message = f"version {candidate_version} is newer than schema version {schema_version}"
        except version.InvalidVersion:
            pass

        self.warning_count += 1
        return result.model_copy(update={
            'warnings': result.warnings + [ValidationIssue(field="version", message=message)]
        })

    def add_rule(self, rule: ValidationRule) -> None:
        """
        Add a custom validation rule.

        Args:
            rule: Custom validation rule to add
        """
        self.rules.append(rule)
        logger.info(f"Added validation rule: {rule.name}")

    def remove_rule(self, rule_name: str) -> bool:
        """
        Remove a validation rule by name.

        Returns:
            True if rule was removed
        """
        for i, rule in enumerate(self.rules):
            if rule.name == rule_name:
                del self.rules[i]
                logger.info(f"Removed validation rule: {rule_name}")
                return True
        return False

    def get_statistics(self) -> Dict[str, float]:
        """Get validation statistics."""
        return {
            'total_validations': self.validation_count,
            'total_errors': self.error_count,
            'total_warnings': self.warning_count,
            'success_rate': (
                (self.validation_count - self.error_count) / max(self.validation_count, 1)
            ) * 100
        }

    def reset_statistics(self) -> None:
        """Reset validation statistics."""
        self.validation_count = 0
        self.error_count = 0
        self.warning_count = 0

    # Private methods

    def _check_required_fields(self, data: Dict[str, Any]) -> List[ValidationIssue]:
        errors = [
            ValidationIssue(field=name, message="Missing required field")
            for name in _required_fields(PluginConfiguration)
            if name not in data
        ]

        performance = data.get('performance')
        if isinstance(performance, Mapping):
            errors.extend(
                ValidationIssue(field=f"performance.{name}", message="Missing required field")
                for name in _required_fields(PerformanceSettings)
                if name not in performance
            )

        return errors

    def _convert_errors(self, error: PydanticValidationError) -> List[ValidationIssue]:
        issues = []
        for item in error.errors():
            field_path = '.'.join(str(loc) for loc in item['loc'])
            issues.append(ValidationIssue(field=field_path, message=item['msg']))
        return issues

    def _run_rules(self, config: PluginConfiguration) -> Findings:
        errors: List[ValidationIssue] = []
        warnings: List[ValidationIssue] = []

        for rule in self.rules:
            try:
                rule_errors, rule_warnings = rule.validate(config)
            except Exception as e:
                logger.error(f"Error in validation rule {rule.name}: {e}")
                errors.append(ValidationIssue(field="", message=f"[{rule.name}] validation rule failed: {e}"))
                continue
            errors.extend(rule_errors)
            warnings.extend(rule_warnings)

        return errors, warnings

    def _finish(self, errors: List[ValidationIssue], warnings: List[ValidationIssue]) -> ValidationResult:
        if errors:
            self.error_count += 1
            logger.debug(f"Configuration validation failed: {[str(e) for e in errors]}")
        if warnings:
            self.warning_count += 1

        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def apply_nested_updates(target: Dict[str, Any], updates: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Overlay a sparse mapping onto ``target`` in place.

    Nested mappings are merged key by key; any other value replaces the
    existing one. Dotted keys such as ``'performance.max_concurrent_ops'``
    address nested fields directly.
    """
    for key, value in updates.items():
        if '.' in key:
            parts = key.split('.')
            current = target

            for part in parts[:-1]:
                if not isinstance(current.get(part), dict):
                    current[part] = {}
                current = current[part]

            current[parts[-1]] = value
        elif isinstance(value, Mapping) and isinstance(target.get(key), dict):
            apply_nested_updates(target[key], value)
        else:
            target[key] = value
    return target
