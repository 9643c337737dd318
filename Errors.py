################### errors ###################
# bad inputs or hyperparameters, detected before any training work
class ConfigurationError(ValueError):
    pass


# data that would corrupt the cascade if training went on (empty leaves, NaN residuals)
class DegenerateDataError(RuntimeError):
    def __init__(self, message, stage=None, tree=None):
        self.message=message
        self.stage=stage
        self.tree=tree
        super().__init__(self.__str__())

    def __str__(self):
        where=[]
        if self.stage is not None:
            where.append('stage %d' % self.stage)
        if self.tree is not None:
            where.append('tree %d' % self.tree)
        if where:
            return '%s (%s)' % (self.message, ', '.join(where))
        return self.message

    # same error with the failing unit attached
    def At(self, stage=None, tree=None):
        return DegenerateDataError(self.message,
                                   self.stage if stage is None else stage,
                                   self.tree if tree is None else tree)
