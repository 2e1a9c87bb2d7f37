"""StudyFlow: spaced repetition, focus sessions and gamification."""
