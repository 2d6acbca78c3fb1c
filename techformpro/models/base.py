class Serializable:
    """Column-for-column dict view of a row, the shape every storage backend returns."""

    def to_dict(self):
        row = {}
        for column in self.__table__.columns:
            value = getattr(self, column.name)
            if isinstance(value, list):
                value = list(value)
            row[column.name] = value
        return row
