"""Pure domain layer: rate rules, visits, DTOs, ports and the injectable clock."""
