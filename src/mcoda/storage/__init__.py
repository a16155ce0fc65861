"""SQLite persistence shared by the job store and the capability registry."""
