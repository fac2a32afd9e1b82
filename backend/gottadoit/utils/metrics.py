# /gottadoit/utils/metrics.py

from prometheus_client import Counter, Histogram

# Prometheus metrics for the onboarding service, kept in one place so every
# module increments the same collectors.

# Onboarding runtime
dispatch_counter = Counter('onboarding_dispatch_total', 'Button dispatches', ['action_type', 'status'])
step_not_found_counter = Counter('onboarding_step_not_found_total', 'Progress records pointing at a missing node')
progress_conflict_counter = Counter('onboarding_progress_conflicts_total', 'Optimistic progress write conflicts')

# Authoring
flow_publish_counter = Counter('onboarding_flow_publish_total', 'Flow publishes', ['status'])
editor_operations_counter = Counter('onboarding_editor_operations_total', 'Editor operations', ['operation', 'status'])

# Effects
effect_counter = Counter('onboarding_effects_total', 'Action side effects', ['kind', 'status'])

# Infrastructure
database_operations_counter = Counter('database_operations_total', 'Database operations', ['operation', 'status'])
response_time_histogram = Histogram('response_time_seconds', 'Response time in seconds', ['endpoint'])
